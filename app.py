#!/usr/bin/env python3
"""
Kanji festival calendar: proxy server + calendar page + headless card export.

Routes:
- GET /                        calendar page; every festival cell carries data-kanji="<id>"
- GET /api/unsplash?query=...  random Unsplash photo -> {"imageUrl": ...}
- GET /api/gemini/<id>         festival description from Gemini, cached in memory by id

Deploy:
- Build: pip install -r requirements.txt
- Start: gunicorn app:app
- Env vars: GEMINI_API_KEY, UNSPLASH_ACCESS_KEY (a .env file in the repo root works too)

Local run:
  python app.py --serve --port 3000
  python app.py --card hanami --out hanami.html     # needs the server above running
  python app.py --sweep
"""

from __future__ import annotations

import argparse
import asyncio
import html
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from flask import Flask, Response, jsonify, request

from kanji_calendar import config
from kanji_calendar.fetchers import FestivalFetcher
from kanji_calendar.logger import setup_logger
from kanji_calendar.orchestrator import MIN_LOADING_MS, CalendarSession
from kanji_calendar.store import ExpiringStore, FileBackend

logger = setup_logger()

app = Flask(__name__, static_folder="public", static_url_path="")

# -----------------------------
# Constants
# -----------------------------
UNSPLASH_RANDOM = "https://api.unsplash.com/photos/random"
GEMINI_GENERATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

DEFAULT_UNSPLASH_QUERY = "japan matsuri"
UNSPLASH_ERROR_IMAGE = "https://placehold.co/600x400/ff0000/ffffff/png?text=Error"
DESCRIPTION_IMAGE = "https://placehold.co/600x400/87CEEB/ffffff/png?text={label}"

DEFAULT_OUT = "card.html"

FESTIVALS: List[Dict[str, Any]] = [
    {"id": "shogatsu", "kanji": "正月", "month": 1, "day": 1},
    {"id": "setsubun", "kanji": "節分", "month": 2, "day": 3},
    {"id": "hinamatsuri", "kanji": "雛祭り", "month": 3, "day": 3},
    {"id": "hanami", "kanji": "花見", "month": 4, "day": 1},
    {"id": "kodomo-no-hi", "kanji": "こどもの日", "month": 5, "day": 5},
    {"id": "tanabata", "kanji": "七夕", "month": 7, "day": 7},
    {"id": "obon", "kanji": "お盆", "month": 8, "day": 15},
    {"id": "tsukimi", "kanji": "月見", "month": 9, "day": 17},
    {"id": "shichi-go-san", "kanji": "七五三", "month": 11, "day": 15},
    {"id": "omisoka", "kanji": "大晦日", "month": 12, "day": 31},
]

FESTIVAL_IDS = frozenset(f["id"] for f in FESTIVALS)

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

DESCRIPTION_PROMPT = """You are a professor of Japanese language and culture specialising in kanji and traditional celebrations. Explain the {festival_id} celebration, covering:

1. The correct kanji spelling
2. Readings in romaji (Hepburn), hiragana and katakana (if relevant)
3. The meaning and literal sense of the kanji used
4. Celebration details: history and origin, when it is held, main activities, special food, important rituals, cultural and philosophical meaning
5. How it is celebrated in modern Japan

Answer only with tidy JSON in this shape, no extra commentary:
{{
    "romaji": "[readings in romaji, hiragana, katakana]",
    "title": "[name in Japanese]",
    "translation": "[translation in Indonesian]",
    "description": "[the celebration details above, in about 5 sentences]"
}}"""

# Gemini results, keyed by festival id only
_description_cache: Dict[str, Dict[str, Any]] = {}


# -----------------------------
# Helpers
# -----------------------------
def fetch_json(url: str, params: Optional[Dict[str, str]] = None, timeout: int = 15) -> Dict[str, Any]:
    r = requests.get(url, params=params or {}, timeout=timeout)
    r.raise_for_status()
    return r.json()


def extract_json_block(text: str) -> Dict[str, Any]:
    """Strip markdown fences and parse the first {...} block in a model reply."""
    text = text.replace("```json", "").replace("```", "").strip()
    m = re.search(r"\{[\s\S]*\}", text)
    if not m:
        raise ValueError("No JSON object in model reply")
    data = json.loads(m.group(0))
    if not isinstance(data, dict):
        raise ValueError("Model reply JSON is not an object")
    return data


def parse_description(text: str, festival_id: str) -> Dict[str, Any]:
    try:
        return extract_json_block(text)
    except ValueError as e:
        logger.warning("Could not parse Gemini reply for %s: %s", festival_id, e)
        return {
            "title": festival_id,
            "translation": "Japanese celebration / special day",
            "description": text[:200] + "...",
        }


def description_error_payload(festival_id: str) -> Dict[str, str]:
    return {
        "title": festival_id,
        "translation": "Could not load data",
        "image": UNSPLASH_ERROR_IMAGE,
        "description": "Sorry, something went wrong while loading this information. Please try again later.",
    }


# -----------------------------
# Upstream APIs
# -----------------------------
def unsplash_image_url(query: str) -> str:
    data = fetch_json(UNSPLASH_RANDOM, params={"query": query, "client_id": config.unsplash_access_key()})
    return data["urls"]["regular"]


def gemini_generate_text(prompt: str) -> str:
    url = GEMINI_GENERATE.format(model=config.gemini_model())
    r = requests.post(
        url,
        params={"key": config.gemini_api_key()},
        json={"contents": [{"parts": [{"text": prompt}]}]},
        timeout=60,
    )
    r.raise_for_status()
    data = r.json()
    return data["candidates"][0]["content"]["parts"][0]["text"]


def describe_festival(festival_id: str) -> Dict[str, Any]:
    cached = _description_cache.get(festival_id)
    if cached is not None:
        logger.info("Serving cached description for %s", festival_id)
        return cached

    text = gemini_generate_text(DESCRIPTION_PROMPT.format(festival_id=festival_id))
    data = parse_description(text, festival_id)
    data["image"] = DESCRIPTION_IMAGE.format(label=quote(festival_id, safe=""))
    _description_cache[festival_id] = data
    return data


# -----------------------------
# API routes
# -----------------------------
@app.get("/api/unsplash")
def api_unsplash() -> Response:
    query = request.args.get("query", "").strip() or DEFAULT_UNSPLASH_QUERY
    try:
        return jsonify({"imageUrl": unsplash_image_url(query)})
    except Exception as e:
        logger.error("Error fetching image from Unsplash: %s: %s", type(e).__name__, e)
        resp = jsonify({"imageUrl": UNSPLASH_ERROR_IMAGE})
        resp.status_code = 500
        return resp


@app.get("/api/gemini/<festival_id>")
def api_gemini(festival_id: str) -> Response:
    # The client sends ?prompt=..., but the server prompt and cache key are fixed per id.
    if festival_id not in FESTIVAL_IDS:
        logger.warning("Rejected description request for unknown festival %s", festival_id)
        resp = jsonify(description_error_payload(festival_id))
        resp.status_code = 404
        return resp
    try:
        return jsonify(describe_festival(festival_id))
    except Exception as e:
        logger.error("Error from Gemini API for %s: %s: %s", festival_id, type(e).__name__, e)
        resp = jsonify(description_error_payload(festival_id))
        resp.status_code = 500
        return resp


# -----------------------------
# Calendar page
# -----------------------------
def html_page(title: str, festivals: List[Dict[str, Any]]) -> str:
    by_month: Dict[int, List[Dict[str, Any]]] = {}
    for f in festivals:
        by_month.setdefault(int(f["month"]), []).append(f)

    months = []
    for month in range(1, 13):
        cells = []
        for f in sorted(by_month.get(month, []), key=lambda x: int(x["day"])):
            fid = html.escape(str(f["id"]))
            cells.append(
                f"""<div class="kanji-cell" data-kanji="{fid}" title="{fid}">
  <span class="day">{int(f["day"])}</span>
  <span class="kanji">{html.escape(str(f["kanji"]))}</span>
</div>"""
            )
        body = "\n".join(cells) if cells else "<div class='empty'></div>"
        months.append(
            f"""<section class="month">
<h2>{MONTH_NAMES[month - 1]}</h2>
{body}
</section>"""
        )

    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{html.escape(title)}</title>
  <link rel="stylesheet" href="/style.css">
</head>
<body>
  <header><h1>{html.escape(title)}</h1></header>
  <main class="calendar">
{chr(10).join(months)}
  </main>
</body>
</html>
"""


@app.get("/")
def render_page() -> Response:
    return Response(html_page(config.page_title(), FESTIVALS), mimetype="text/html")


# -----------------------------
# Headless client
# -----------------------------
async def export_card(
    festival_id: str,
    base_url: str,
    cache_dir: Path,
    timeout: Optional[float] = None,
    min_loading_ms: int = MIN_LOADING_MS,
) -> CalendarSession:
    """Load the calendar headlessly, click one festival and wait for its card to settle."""
    store = ExpiringStore(FileBackend(cache_dir))
    fetcher = FestivalFetcher(store, base_url=base_url, timeout=timeout)
    session = CalendarSession(fetcher, min_loading_ms=min_loading_ms)
    await session.start()
    task = session.click(festival_id)
    if task is not None:
        await task
    return session


# -----------------------------
# CLI
# -----------------------------
def main() -> int:
    parser = argparse.ArgumentParser(description="Kanji festival calendar: proxy server and headless card export.")

    parser.add_argument("--serve", action="store_true", help="Run the proxy server.")
    parser.add_argument("--port", type=int, default=None, help="Server port (default: $PORT or 3000).")

    parser.add_argument("--card", metavar="ID", help="Click festival ID headlessly and write the resulting card HTML.")
    parser.add_argument("--base-url", default=None, help="Proxy base URL (default: $PROXY_BASE_URL or the local server).")
    parser.add_argument("--out", default=DEFAULT_OUT, help=f"Output HTML filename (default: {DEFAULT_OUT}).")

    parser.add_argument("--sweep", action="store_true", help="Remove expired entries from the client cache.")
    parser.add_argument("--cache-dir", default=None, help="Client cache directory (default: $CACHE_DIR).")

    args = parser.parse_args()

    if args.serve:
        app.run(host="0.0.0.0", port=args.port or config.port(), debug=False)
        return 0

    cache_dir = Path(args.cache_dir) if args.cache_dir else config.cache_dir()

    if args.sweep:
        removed = ExpiringStore(FileBackend(cache_dir)).sweep()
        print(f"[ok] Removed {removed} expired entries from {cache_dir.resolve()}")
        return 0

    if args.card:
        base_url = args.base_url or config.proxy_base_url()
        session = asyncio.run(export_card(args.card, base_url, cache_dir, timeout=config.fetch_timeout()))
        active = session.cards.active
        if active is None:
            print(f"[warn] No card rendered for {args.card}")
            return 1
        out_path = Path(args.out)
        out_path.write_text(active.html, encoding="utf-8")
        if active.variant == "error":
            print(f"[warn] Description for {args.card} failed; wrote the error card to {out_path.resolve()}")
            return 1
        print(f"[ok] Wrote {out_path.resolve()}")
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

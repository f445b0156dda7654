"""Settings for the proxy and the headless client, from the environment.

A `.env` file in the project root is read once at import; variables already
set in the environment win over it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_PORT = 3000
DEFAULT_CACHE_DIR = ".cache_kanji_calendar"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
DEFAULT_TITLE = "Kalender Matsuri"

load_dotenv(Path(__file__).resolve().parent.parent / ".env", override=False)


def _env(key: str, default: str = "") -> str:
    return os.getenv(key, "").strip() or default


def _required(key: str) -> str:
    val = _env(key)
    if not val:
        raise ValueError(f"Missing required environment variable: {key}. Set it in .env or export it.")
    return val


def gemini_api_key() -> str:
    return _required("GEMINI_API_KEY")


def unsplash_access_key() -> str:
    return _required("UNSPLASH_ACCESS_KEY")


def gemini_model() -> str:
    return _env("GEMINI_MODEL", DEFAULT_GEMINI_MODEL)


def port() -> int:
    try:
        return int(_env("PORT", str(DEFAULT_PORT)))
    except ValueError:
        return DEFAULT_PORT


def cache_dir() -> Path:
    return Path(_env("CACHE_DIR", DEFAULT_CACHE_DIR))


def proxy_base_url() -> str:
    """Where the headless client finds the proxy. Defaults to the local server."""
    return _env("PROXY_BASE_URL", f"http://localhost:{port()}").rstrip("/")


def fetch_timeout() -> Optional[float]:
    """Client request timeout in seconds; unset means no timeout."""
    try:
        return float(_env("FETCH_TIMEOUT")) if _env("FETCH_TIMEOUT") else None
    except ValueError:
        return None


def page_title() -> str:
    return _env("PAGE_TITLE", DEFAULT_TITLE)

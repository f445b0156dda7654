"""
Image and description fetchers.

Both consult the expiring store first and only go to the proxy on a miss.
Blocking `requests` calls run in a worker thread; the store is only touched
from the event loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import requests

from kanji_calendar.logger import get_logger
from kanji_calendar.store import GEMINI_TTL, UNSPLASH_TTL, ExpiringStore

logger = get_logger("kanji_calendar.fetchers")

KANJI_IMAGE_MAPPING = {
    "japan-matsuri": "japan-matsuri",
    "hanami": "cherry-blossom-japan",
    "japan-festival": "japan-festival",
}
DEFAULT_IMAGE_QUERY = "japan-matsuri"

ERROR_IMAGE_URL = "https://placehold.co/600x400/ff0000/ffffff/png?text=Error+Loading+Image"

DESCRIPTION_PROMPT = (
    "You are an expert in the Japanese language. Explain the {festival_id} celebration "
    "and its meaning in Japanese culture."
)


def image_cache_key(festival_id: str) -> str:
    return f"unsplash_{festival_id}"


def description_cache_key(festival_id: str) -> str:
    return f"gemini_{festival_id}"


def image_query(festival_id: str) -> str:
    return KANJI_IMAGE_MAPPING.get(festival_id, DEFAULT_IMAGE_QUERY)


class FestivalFetcher:
    def __init__(
        self,
        store: ExpiringStore,
        base_url: str = "",
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.base_url = base_url.rstrip("/")
        # no session: one requests.get per call, nothing shared between worker threads
        self.session = session
        self.timeout = timeout

    def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        get = self.session.get if self.session is not None else requests.get
        r = get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    async def fetch_image(self, festival_id: str) -> str:
        cache_key = image_cache_key(festival_id)
        cached = self.store.get(cache_key)
        if cached:
            logger.debug("Image cache hit for %s", festival_id)
            return cached

        try:
            data = await asyncio.to_thread(
                self._get_json, "/api/unsplash", {"query": image_query(festival_id)}
            )
            image_url = data.get("imageUrl") if isinstance(data, dict) else None
            if not isinstance(image_url, str) or not image_url.strip():
                raise ValueError("Image response carried no imageUrl")
        except (requests.RequestException, ValueError) as e:
            logger.error("Error fetching image for %s: %s", festival_id, e)
            return ERROR_IMAGE_URL

        self.store.set(cache_key, image_url, UNSPLASH_TTL)
        return image_url

    async def fetch_description(self, festival_id: str) -> Dict[str, Any]:
        cache_key = description_cache_key(festival_id)
        cached = self.store.get(cache_key)
        if cached is not None:
            logger.debug("Description cache hit for %s", festival_id)
            return cached

        prompt = DESCRIPTION_PROMPT.format(festival_id=festival_id)
        try:
            data = await asyncio.to_thread(
                self._get_json, f"/api/gemini/{quote(festival_id, safe='')}", {"prompt": prompt}
            )
            if not isinstance(data, dict):
                raise ValueError("Description response is not a JSON object")
        except (requests.RequestException, ValueError) as e:
            logger.error("Error fetching description for %s: %s", festival_id, e)
            raise

        self.store.set(cache_key, data, GEMINI_TTL)
        return data

    async def prefetch_images(self, festival_ids: Optional[Iterable[str]] = None) -> None:
        """Warm the image cache for every mapped festival that has no live entry."""
        ids = list(festival_ids) if festival_ids is not None else list(KANJI_IMAGE_MAPPING)
        missing = [fid for fid in ids if not self.store.get(image_cache_key(fid))]
        if missing:
            await asyncio.gather(*(self.fetch_image(fid) for fid in missing))

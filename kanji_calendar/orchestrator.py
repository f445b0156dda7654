"""
Click orchestration for the festival calendar.

A click shows the loading card, then fetches the image and the description
alongside a minimum loading delay. The result is rendered only while the
click is still the current one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from kanji_calendar.cards import CardController, Page
from kanji_calendar.fetchers import FestivalFetcher
from kanji_calendar.logger import get_logger

logger = get_logger("kanji_calendar.orchestrator")

MIN_LOADING_MS = 1000


@dataclass
class ClickEvent:
    """A document click: `kanji` is the nearest `data-kanji` value, if any; `close` marks the card's close button."""

    kanji: Optional[str] = None
    in_card: bool = False
    close: bool = False
    default_prevented: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True


class CancelToken:
    def __init__(self, festival_id: str) -> None:
        self.festival_id = festival_id
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ClickOrchestrator:
    def __init__(
        self,
        fetcher: FestivalFetcher,
        cards: CardController,
        min_loading_ms: int = MIN_LOADING_MS,
    ) -> None:
        self.fetcher = fetcher
        self.cards = cards
        self.min_loading_ms = min_loading_ms
        self._token: Optional[CancelToken] = None
        self._tasks: Set[asyncio.Task] = set()

    def _is_current(self, token: CancelToken) -> bool:
        active = self.cards.active
        return not token.cancelled and active is not None and active.festival_id == token.festival_id

    def _cancel_pending(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    async def handle_click(self, festival_id: str) -> None:
        if self.cards.find(festival_id) is not None:
            return

        self._cancel_pending()
        token = CancelToken(festival_id)
        self._token = token
        self.cards.render_loading(festival_id)

        try:
            image_url, data, _ = await asyncio.gather(
                self.fetcher.fetch_image(festival_id),
                self.fetcher.fetch_description(festival_id),
                asyncio.sleep(self.min_loading_ms / 1000),
            )
        except Exception as e:
            logger.error("Loading %s failed: %s", festival_id, e)
            if self._is_current(token):
                self.cards.render_error(festival_id)
            return

        if not self._is_current(token):
            logger.debug("Dropping stale result for %s", festival_id)
            return

        self.cards.render_final(festival_id, _final_fields(festival_id, data, image_url))

    def dismiss(self) -> None:
        self._cancel_pending()
        self.cards.dismiss()

    # -----------------------------
    # Listeners
    # -----------------------------
    def on_click(self, event: ClickEvent) -> Optional[asyncio.Task]:
        if event.close or (not event.kanji and not event.in_card):
            self.dismiss()
            return None

        if event.kanji:
            event.prevent_default()
            task = asyncio.get_running_loop().create_task(self.handle_click(event.kanji))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return task
        return None

    def on_keydown(self, key: str) -> None:
        if key == "Escape" and self.cards.active is not None:
            self.dismiss()

    def on_resize(self, width: int, height: int) -> None:
        self.cards.reposition(width, height)


def _final_fields(festival_id: str, data: Dict[str, Any], image_url: str) -> Dict[str, str]:
    return {
        "title": data.get("title") or festival_id,
        "romaji": data.get("romaji") or "",
        "translation": data.get("translation") or "",
        "image": image_url,
        "description": data.get("description") or "",
    }


class CalendarSession:
    """One loaded calendar page: store sweep and image prefetch at start, then event dispatch."""

    def __init__(
        self,
        fetcher: FestivalFetcher,
        page: Optional[Page] = None,
        min_loading_ms: int = MIN_LOADING_MS,
    ) -> None:
        self.fetcher = fetcher
        self.page = page or Page()
        self.cards = CardController(self.page)
        self.orchestrator = ClickOrchestrator(fetcher, self.cards, min_loading_ms=min_loading_ms)

    async def start(self) -> None:
        self.fetcher.store.sweep()
        await self.fetcher.prefetch_images()

    def click(self, kanji: Optional[str] = None, in_card: bool = False, close: bool = False) -> Optional[asyncio.Task]:
        return self.orchestrator.on_click(ClickEvent(kanji=kanji, in_card=in_card, close=close))

    def keydown(self, key: str) -> None:
        self.orchestrator.on_keydown(key)

    def resize(self, width: int, height: int) -> None:
        self.orchestrator.on_resize(width, height)

    def card_html(self) -> str:
        active = self.cards.active
        return active.html if active is not None else ""

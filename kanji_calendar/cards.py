"""
Floating festival card: page model and presentation controller.

`Page` stands in for the document: it keeps the attached cards, the viewport
size, and schedules paint-frame and timeout callbacks on the running loop.
`CardController` owns the single active card.
"""

from __future__ import annotations

import asyncio
import html
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from kanji_calendar.logger import get_logger

logger = get_logger("kanji_calendar.cards")

CARD_CLASSES = "calendar-card fixed bg-white shadow-lg rounded-lg p-6 max-w-sm z-50"
CARD_WIDTH = 384  # max-w-sm (24rem)
CARD_HEIGHT = 400
CARD_TRANSITION = "all 0.3s cubic-bezier(0.4, 0, 0.2, 1)"

SPINNER_URL = "/spinner.gif"
BROKEN_IMAGE_URL = "https://placehold.co/600x400/ff0000/ffffff/png?text=Error"


def error_descriptor(festival_id: str) -> Dict[str, str]:
    return {
        "title": festival_id,
        "romaji": "Error",
        "translation": "Failed to load content",
        "image": BROKEN_IMAGE_URL,
        "description": "Something went wrong while loading this festival. Please try again.",
    }


@dataclass
class Card:
    festival_id: str
    style: Dict[str, str] = field(default_factory=dict)
    html: str = ""
    variant: str = "loading"  # loading | final | error
    closing: bool = False
    classes: str = CARD_CLASSES


class Page:
    def __init__(self, width: int = 1280, height: int = 800) -> None:
        self.width = width
        self.height = height
        self.cards: List[Card] = []

    def append(self, card: Card) -> None:
        self.cards.append(card)

    def remove(self, card: Card) -> None:
        if card in self.cards:
            self.cards.remove(card)

    def request_animation_frame(self, callback: Callable[[], Any]) -> asyncio.Handle:
        return asyncio.get_running_loop().call_soon(callback)

    def set_timeout(self, callback: Callable[[], Any], ms: float) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(ms / 1000, callback)


def _centered(width: int, height: int) -> Dict[str, str]:
    return {
        "top": f"{(height - CARD_HEIGHT) / 2:g}px",
        "left": f"{(width - CARD_WIDTH) / 2:g}px",
    }


# -----------------------------
# Markup
# -----------------------------
CLOSE_BUTTON = """
<button class="card-close absolute top-2 right-2 text-gray-400 hover:text-gray-600 transition-colors" aria-label="Close">
  <svg class="w-6 h-6" fill="none" stroke="currentColor" viewBox="0 0 24 24">
    <path stroke-linecap="round" stroke-linejoin="round" stroke-width="2" d="M6 18L18 6M6 6l12 12"></path>
  </svg>
</button>
"""


def loading_html(festival_id: str) -> str:
    fid = html.escape(festival_id)
    return f"""
<div class="relative">
  <h3 class="text-xl font-bold mb-2">Loading for {fid}</h3>
  <p class="text-sm text-gray-600 mb-1">.........</p>
  <p class="text-sm text-gray-600 mb-3">...........</p>
  <div class="relative w-full h-32 mb-4 overflow-hidden rounded-md">
    <img src="{SPINNER_URL}" alt="" class="w-full h-full object-cover">
  </div>
  <div class="text-sm text-gray-700">Please wait........</div>
</div>
"""


def final_html(data: Dict[str, Any]) -> str:
    def field_text(name: str) -> str:
        return html.escape(str(data.get(name) or ""))

    return f"""
<div class="relative">
  {CLOSE_BUTTON}
  <h3 class="text-xl font-bold mb-2">{field_text("title")}</h3>
  <p class="text-sm text-gray-600 mb-1">{field_text("romaji")}</p>
  <p class="text-sm text-gray-600 mb-3">{field_text("translation")}</p>
  <div class="relative w-full h-32 mb-4 overflow-hidden rounded-md">
    <img src="{field_text("image")}" alt="{field_text("title")}" class="w-full h-full object-cover"
         onerror="this.src='{BROKEN_IMAGE_URL}'">
  </div>
  <div class="text-sm text-gray-700">{field_text("description")}</div>
</div>
"""


# -----------------------------
# Controller
# -----------------------------
class CardController:
    def __init__(self, page: Page, fade_ms: int = 300, resize_debounce_ms: int = 100) -> None:
        self.page = page
        self.fade_ms = fade_ms
        self.resize_debounce_ms = resize_debounce_ms
        self.active: Optional[Card] = None
        self._resize_handle: Optional[asyncio.TimerHandle] = None

    def find(self, festival_id: str) -> Optional[Card]:
        for card in self.page.cards:
            if card.festival_id == festival_id and not card.closing:
                return card
        return None

    def create_card(self, festival_id: str) -> Card:
        style = _centered(self.page.width, self.page.height)
        style.update(opacity="0", transform="scale(0.95)", transition=CARD_TRANSITION)
        return Card(festival_id=festival_id, style=style)

    def _fade_out(self, card: Card) -> None:
        card.closing = True
        card.style.update(opacity="0", transform="scale(0.95)")
        self.page.set_timeout(lambda: self.page.remove(card), self.fade_ms)

    def remove_existing(self) -> None:
        for card in list(self.page.cards):
            if not card.closing:
                self._fade_out(card)

    def show_with_animation(self, card: Card) -> None:
        self.remove_existing()
        self.page.append(card)
        self.active = card

        def reveal() -> None:
            card.style.update(opacity="1", transform="scale(1)")

        self.page.request_animation_frame(reveal)

    def _render(self, festival_id: str, markup: str, variant: str) -> Card:
        card = self.create_card(festival_id)
        card.html = markup
        card.variant = variant
        self.show_with_animation(card)
        return card

    def render_loading(self, festival_id: str) -> Card:
        return self._render(festival_id, loading_html(festival_id), "loading")

    def render_final(self, festival_id: str, data: Dict[str, Any]) -> Card:
        return self._render(festival_id, final_html(data), "final")

    def render_error(self, festival_id: str) -> Card:
        return self._render(festival_id, final_html(error_descriptor(festival_id)), "error")

    def dismiss(self) -> None:
        self.remove_existing()
        self.active = None

    def reposition(self, width: Optional[int] = None, height: Optional[int] = None) -> None:
        """Record the new viewport and recenter the active card after the debounce interval."""
        if width is not None:
            self.page.width = width
        if height is not None:
            self.page.height = height
        if self._resize_handle is not None:
            self._resize_handle.cancel()
        self._resize_handle = self.page.set_timeout(self._recenter, self.resize_debounce_ms)

    def _recenter(self) -> None:
        self._resize_handle = None
        if self.active is not None:
            self.active.style.update(_centered(self.page.width, self.page.height))

"""
Tests for ClickOrchestrator and CalendarSession: loading -> final/error, stale results, listeners.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest

from kanji_calendar.cards import CardController, Page
from kanji_calendar.fetchers import FestivalFetcher
from kanji_calendar.orchestrator import CalendarSession, ClickEvent, ClickOrchestrator

HANAMI = {"title": "花見", "romaji": "Hanami", "translation": "Melihat bunga", "description": "..."}


class FakeFetcher:
    """Fetcher double; a result may be a value, an exception, or a future to wait on."""

    def __init__(self) -> None:
        self.image_results: Dict[str, Any] = {}
        self.description_results: Dict[str, Any] = {}
        self.image_calls: List[str] = []
        self.description_calls: List[str] = []

    async def _resolve(self, result: Any) -> Any:
        if isinstance(result, asyncio.Future):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_image(self, festival_id: str) -> str:
        self.image_calls.append(festival_id)
        return await self._resolve(self.image_results.get(festival_id, "https://img/default.jpg"))

    async def fetch_description(self, festival_id: str) -> Dict[str, Any]:
        self.description_calls.append(festival_id)
        return await self._resolve(self.description_results.get(festival_id, {"title": festival_id}))


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def cards() -> CardController:
    return CardController(Page(), fade_ms=10, resize_debounce_ms=100)


@pytest.fixture
def orchestrator(fetcher: FakeFetcher, cards: CardController) -> ClickOrchestrator:
    return ClickOrchestrator(fetcher, cards, min_loading_ms=20)


def _open_cards(cards: CardController):
    return [c for c in cards.page.cards if not c.closing]


@pytest.mark.asyncio
async def test_click_shows_loading_then_final(fetcher: FakeFetcher, cards: CardController) -> None:
    fetcher.description_results["hanami"] = HANAMI
    fetcher.image_results["hanami"] = "https://img/x.jpg"
    orchestrator = ClickOrchestrator(fetcher, cards, min_loading_ms=200)
    loop = asyncio.get_running_loop()

    started = loop.time()
    event = ClickEvent(kanji="hanami")
    task = orchestrator.on_click(event)
    assert event.default_prevented

    await asyncio.sleep(0)
    assert cards.active.variant == "loading"
    assert "hanami" in cards.active.html

    await asyncio.sleep(0.1)
    assert cards.active.variant == "loading"

    await task
    assert loop.time() - started >= 0.19
    card = cards.active
    assert card.variant == "final"
    assert "花見" in card.html
    assert "Hanami" in card.html
    assert 'src="https://img/x.jpg"' in card.html


@pytest.mark.asyncio
async def test_missing_fields_default_to_id_and_blank(orchestrator: ClickOrchestrator, fetcher: FakeFetcher, cards) -> None:
    fetcher.description_results["obon"] = {}
    await orchestrator.handle_click("obon")
    assert cards.active.variant == "final"
    assert '<h3 class="text-xl font-bold mb-2">obon</h3>' in cards.active.html


@pytest.mark.asyncio
async def test_second_click_on_same_id_is_noop(orchestrator: ClickOrchestrator, fetcher: FakeFetcher, cards) -> None:
    pending = asyncio.get_running_loop().create_future()
    fetcher.description_results["hanami"] = pending

    first = orchestrator.on_click(ClickEvent(kanji="hanami"))
    await asyncio.sleep(0)
    second = orchestrator.on_click(ClickEvent(kanji="hanami"))
    await second

    assert len(_open_cards(cards)) == 1
    assert fetcher.description_calls == ["hanami"]
    assert fetcher.image_calls == ["hanami"]

    pending.set_result(HANAMI)
    await first
    assert cards.active.variant == "final"


@pytest.mark.asyncio
async def test_description_failure_shows_error_card(orchestrator: ClickOrchestrator, fetcher: FakeFetcher, cards) -> None:
    fetcher.image_results["hanami"] = "https://img/x.jpg"
    fetcher.description_results["hanami"] = RuntimeError("upstream 500")

    await orchestrator.handle_click("hanami")

    assert cards.active.festival_id == "hanami"
    assert cards.active.variant == "error"
    assert "https://img/x.jpg" not in cards.active.html


@pytest.mark.asyncio
async def test_stale_result_is_dropped(orchestrator: ClickOrchestrator, fetcher: FakeFetcher, cards) -> None:
    loop = asyncio.get_running_loop()
    slow = loop.create_future()
    fetcher.description_results["hanami"] = slow

    first = orchestrator.on_click(ClickEvent(kanji="hanami"))
    await asyncio.sleep(0)
    second = orchestrator.on_click(ClickEvent(kanji="obon"))
    await second
    assert cards.active.festival_id == "obon"
    assert cards.active.variant == "final"

    slow.set_result(HANAMI)
    await first
    assert cards.active.festival_id == "obon"
    assert [c.festival_id for c in _open_cards(cards)] == ["obon"]


@pytest.mark.asyncio
async def test_stale_failure_is_dropped(orchestrator: ClickOrchestrator, fetcher: FakeFetcher, cards) -> None:
    slow = asyncio.get_running_loop().create_future()
    fetcher.description_results["hanami"] = slow

    first = orchestrator.on_click(ClickEvent(kanji="hanami"))
    await asyncio.sleep(0)
    orchestrator.on_click(ClickEvent(kanji="obon"))

    slow.set_exception(RuntimeError("late failure"))
    await first
    assert cards.active.festival_id == "obon"
    assert cards.active.variant != "error"

    await asyncio.sleep(0.05)
    assert cards.active.festival_id == "obon"
    assert cards.active.variant == "final"


@pytest.mark.asyncio
async def test_outside_click_dismisses_and_drops_result(orchestrator: ClickOrchestrator, fetcher: FakeFetcher, cards) -> None:
    slow = asyncio.get_running_loop().create_future()
    fetcher.description_results["hanami"] = slow

    task = orchestrator.on_click(ClickEvent(kanji="hanami"))
    await asyncio.sleep(0)
    assert orchestrator.on_click(ClickEvent()) is None
    assert cards.active is None

    slow.set_result(HANAMI)
    await task
    assert cards.active is None
    assert _open_cards(cards) == []


@pytest.mark.asyncio
async def test_click_inside_card_keeps_it(orchestrator: ClickOrchestrator, cards) -> None:
    await orchestrator.handle_click("hanami")
    assert orchestrator.on_click(ClickEvent(in_card=True)) is None
    assert cards.active is not None


@pytest.mark.asyncio
async def test_close_button_dismisses_card(orchestrator: ClickOrchestrator, cards) -> None:
    await orchestrator.handle_click("hanami")
    assert "card-close" in cards.active.html

    assert orchestrator.on_click(ClickEvent(in_card=True, close=True)) is None
    assert cards.active is None
    assert _open_cards(cards) == []


@pytest.mark.asyncio
async def test_close_button_during_loading_drops_result(orchestrator: ClickOrchestrator, fetcher: FakeFetcher, cards) -> None:
    slow = asyncio.get_running_loop().create_future()
    fetcher.description_results["hanami"] = slow

    task = orchestrator.on_click(ClickEvent(kanji="hanami"))
    await asyncio.sleep(0)
    orchestrator.on_click(ClickEvent(in_card=True, close=True))

    slow.set_result(HANAMI)
    await task
    assert cards.active is None


@pytest.mark.asyncio
async def test_escape_dismisses(orchestrator: ClickOrchestrator, cards) -> None:
    await orchestrator.handle_click("hanami")
    orchestrator.on_keydown("Enter")
    assert cards.active is not None
    orchestrator.on_keydown("Escape")
    assert cards.active is None


@pytest.mark.asyncio
async def test_resize_recenters_open_card(orchestrator: ClickOrchestrator, cards) -> None:
    await orchestrator.handle_click("hanami")
    content = cards.active.html

    orchestrator.on_resize(784, 1000)
    await asyncio.sleep(0.12)

    assert cards.active.style["top"] == "300px"
    assert cards.active.style["left"] == "200px"
    assert cards.active.html == content


def _json_response(payload) -> MagicMock:
    r = MagicMock()
    r.json.return_value = payload
    r.raise_for_status = MagicMock()
    return r


@pytest.mark.asyncio
async def test_corrupt_cached_image_is_refetched_not_an_error(store, clock) -> None:
    store.backend["cache_unsplash_hanami"] = json.dumps({"expiry": clock.now + 10_000})

    def fake_get(url, params=None, timeout=None):
        if url.endswith("/api/unsplash"):
            return _json_response({"imageUrl": "https://img/fresh.jpg"})
        return _json_response(HANAMI)

    session = MagicMock()
    session.get.side_effect = fake_get
    fetcher = FestivalFetcher(store, base_url="http://proxy.test", session=session)
    orchestrator = ClickOrchestrator(fetcher, CardController(Page()), min_loading_ms=0)

    await orchestrator.handle_click("hanami")

    assert orchestrator.cards.active.variant == "final"
    assert 'src="https://img/fresh.jpg"' in orchestrator.cards.active.html
    assert store.get("unsplash_hanami") == "https://img/fresh.jpg"


@pytest.mark.asyncio
async def test_cached_image_skips_image_endpoint(store) -> None:
    store.set("unsplash_japan-matsuri", "https://img/cached.jpg", 3600)
    session = MagicMock()
    session.get.return_value = _json_response({"title": "祭り", "romaji": "Matsuri"})
    fetcher = FestivalFetcher(store, base_url="http://proxy.test", session=session)
    orchestrator = ClickOrchestrator(fetcher, CardController(Page()), min_loading_ms=0)

    await orchestrator.handle_click("japan-matsuri")

    urls = [c.args[0] for c in session.get.call_args_list]
    assert urls == ["http://proxy.test/api/gemini/japan-matsuri"]
    assert 'src="https://img/cached.jpg"' in orchestrator.cards.active.html


@pytest.mark.asyncio
async def test_session_start_sweeps_and_prefetches(store, clock) -> None:
    store.set("gemini_old", {"title": "x"}, 1)
    clock.advance(5_000)
    session_http = MagicMock()
    session_http.get.return_value = _json_response({"imageUrl": "https://img/p.jpg"})
    fetcher = FestivalFetcher(store, base_url="http://proxy.test", session=session_http)

    calendar = CalendarSession(fetcher, min_loading_ms=0)
    await calendar.start()

    assert "cache_gemini_old" not in store.backend
    assert session_http.get.call_count == 3
    assert store.get("unsplash_hanami") == "https://img/p.jpg"

    session_http.get.return_value = _json_response(HANAMI)
    await calendar.click("hanami")
    assert "花見" in calendar.card_html()
    assert 'src="https://img/p.jpg"' in calendar.card_html()

    calendar.keydown("Escape")
    assert calendar.card_html() == ""

"""Kanji festival calendar: expiring cache, fetchers, card controller, click orchestration."""

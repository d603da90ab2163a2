"""Zotero reference-manager client (Zotero Web API v3).

Endpoint used:
    GET https://api.zotero.org/users/{user_id}/items
        ?itemType=annotation|note&sort=dateAdded&direction=desc&start=N&limit=100

Every request carries ``Zotero-API-Key`` and ``Zotero-API-Version: 3``.  The
body is a JSON list of items and ``Total-Results`` gives the size of the full
result set::

    [{"key": "ABCD2345",
      "data": {"itemType": "annotation", "dateAdded": "2025-01-02T10:15:00Z", ...}}]

Items are counted on the UTC day of ``dateAdded``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any

import httpx

from src.metrics.cache.gaps import DateRange, to_record_date
from src.metrics.clients._http import HttpRemoteClient
from src.metrics.errors import NetworkError
from src.metrics.records import ZoteroDailyStats

logger = logging.getLogger("goalsync.metrics.clients.zotero")

_ZOTERO_API_BASE = "https://api.zotero.org"
_ZOTERO_API_VERSION = "3"
_PAGE_SIZE = 100
_MAX_PAGES = 100
_DEFAULT_BACKOFF_SECONDS = 5.0

_ANNOTATION = "annotation"
_NOTE = "note"


def _parse_date_added(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ZoteroClient(HttpRemoteClient):
    """Daily annotation and note counts from a Zotero library.

    Credentials: ``api_key``, ``user_id``.  Options: ``base_url`` (defaults to
    the public API).

    HTTP 429 responses are retried after the server's ``Backoff`` or
    ``Retry-After`` delay, capped at ``max_backoff`` seconds.
    """

    SOURCE_ID = "zotero"
    DISPLAY_NAME = "Zotero"
    RECORD_TYPE = ZoteroDailyStats
    REQUIRED_CREDENTIALS = ("api_key", "user_id")

    #: Attempts per page request while the API keeps rate limiting.
    MAX_ATTEMPTS = 3

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        max_backoff: float = 30.0,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._max_backoff = max_backoff

    async def fetch(self, date_range: DateRange) -> list[ZoteroDailyStats]:
        counts: dict[date, dict[str, int]] = defaultdict(lambda: {_ANNOTATION: 0, _NOTE: 0})
        for item_type in (_ANNOTATION, _NOTE):
            for day in await self._added_days(item_type, date_range):
                counts[day][item_type] += 1

        return [
            ZoteroDailyStats(day=day, annotation_count=c[_ANNOTATION], note_count=c[_NOTE])
            for day, c in sorted(counts.items())
        ]

    async def _added_days(self, item_type: str, date_range: DateRange) -> list[date]:
        """UTC day of every ``item_type`` item added inside ``date_range``.

        Pages newest first and stops as soon as a page reaches back past the
        start of the range.
        """
        base = self.option("base_url", _ZOTERO_API_BASE).rstrip("/")
        url = f"{base}/users/{self.credential('user_id')}/items"
        days: list[date] = []
        offset = 0

        for _ in range(_MAX_PAGES):
            items, total = await self._page(
                url,
                {
                    "itemType": item_type,
                    "sort": "dateAdded",
                    "direction": "desc",
                    "start": offset,
                    "limit": _PAGE_SIZE,
                },
            )
            if not items:
                break

            oldest: date | None = None
            for item in items:
                if not isinstance(item, dict) or not isinstance(item.get("data"), dict):
                    raise NetworkError(f"{self.DISPLAY_NAME} item is not an object: {item!r}")
                added = _parse_date_added(item["data"].get("dateAdded"))
                if added is None:
                    logger.warning("Zotero: skipping item %s without dateAdded", item.get("key"))
                    continue
                day = to_record_date(added)
                oldest = day if oldest is None else min(oldest, day)
                if day in date_range:
                    days.append(day)

            offset += len(items)
            if oldest is not None and oldest < date_range.start:
                break
            if len(items) < _PAGE_SIZE or (total is not None and offset >= total):
                break
        else:
            logger.warning(
                "Zotero: stopped paging %s items for %s after %d pages",
                item_type,
                date_range,
                _MAX_PAGES,
            )

        return days

    async def _page(self, url: str, params: dict[str, Any]) -> tuple[list[Any], int | None]:
        """One page of items plus the ``Total-Results`` header, if present."""
        headers = {
            "Zotero-API-Key": self.credential("api_key"),
            "Zotero-API-Version": _ZOTERO_API_VERSION,
        }
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                response = await self._send("GET", url, params=params, headers=headers)
                break
            except NetworkError as exc:
                if exc.status_code != 429 or attempt == self.MAX_ATTEMPTS:
                    raise
                delay = self._backoff_seconds(getattr(exc.__cause__, "response", None))
                logger.warning(
                    "Zotero rate limited (attempt %d/%d); retrying in %.1fs",
                    attempt,
                    self.MAX_ATTEMPTS,
                    delay,
                )
                await asyncio.sleep(delay)

        body = self._decode(response)
        if not isinstance(body, list):
            raise NetworkError(f"{self.DISPLAY_NAME} items response is not a list")
        return body, self._safe_int(response.headers.get("Total-Results"))

    def _backoff_seconds(self, response: httpx.Response | None) -> float:
        value = None
        if response is not None:
            value = response.headers.get("Backoff") or response.headers.get("Retry-After")
        seconds = self._safe_float(value)
        if seconds is None:
            seconds = _DEFAULT_BACKOFF_SECONDS
        return max(0.0, min(seconds, self._max_backoff))

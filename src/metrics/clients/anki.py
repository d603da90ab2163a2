"""Anki client over the AnkiConnect add-on (local JSON-RPC on port 8765).

Request::

    POST http://127.0.0.1:8765
    {"action": "cardReviews", "version": 6, "params": {"deck": "Japanese", "startID": 0}}

Response::

    {"result": [...], "error": null}

Each ``cardReviews`` row is
``[reviewTime_ms, cardID, usn, buttonPressed, newInterval, previousInterval,
newFactor, reviewDuration_ms, reviewType]``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any

import httpx

from src.metrics.cache.gaps import DateRange
from src.metrics.clients._http import HttpRemoteClient
from src.metrics.errors import NetworkError
from src.metrics.records import AnkiDailyStats

logger = logging.getLogger("goalsync.metrics.clients.anki")

ANKI_CONNECT_VERSION = 6
DEFAULT_PORT = 8765

# Review row columns
_REVIEW_TIME = 0
_BUTTON = 3
_DURATION = 7
_REVIEW_TYPE = 8

# reviewType 0 = learning (first time the card is seen)
_REVIEW_TYPE_LEARNING = 0


class AnkiClient(HttpRemoteClient):
    """Daily review statistics from a local Anki via AnkiConnect.

    Credentials: ``host`` (AnkiConnect host, 127.0.0.1 unless overridden; an
    empty host turns Anki sync off).
    Options: ``port`` (default 8765), ``decks`` (comma separated; all decks when empty).
    """

    SOURCE_ID = "anki"
    DISPLAY_NAME = "Anki"
    RECORD_TYPE = AnkiDailyStats
    REQUIRED_CREDENTIALS = ("host",)

    #: Attempts per JSON-RPC call when the connection itself fails.
    MAX_ATTEMPTS = 3

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._retry_delay = retry_delay

    @property
    def endpoint(self) -> str:
        host = self.credential("host")
        port = self.option("port", str(DEFAULT_PORT))
        if host.startswith(("http://", "https://")):
            return f"{host.rstrip('/')}:{port}"
        return f"http://{host}:{port}"

    def decks(self) -> list[str]:
        return [d.strip() for d in self.option("decks").split(",") if d.strip()]

    async def invoke(self, action: str, **params: Any) -> Any:
        """Call one AnkiConnect action and return its ``result``.

        Connection failures are retried; HTTP errors and AnkiConnect
        ``error`` payloads are not.

        Raises:
            NetworkError: On transport failure after all attempts, an HTTP
                error, a malformed body, or a non-null ``error`` field.
        """
        payload = {"action": action, "version": ANKI_CONNECT_VERSION, "params": params}
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            try:
                body = await self._post(self.endpoint, payload)
                break
            except NetworkError as exc:
                retryable = isinstance(exc.__cause__, httpx.TransportError)
                if not retryable or attempt == self.MAX_ATTEMPTS:
                    raise
                logger.warning(
                    "AnkiConnect %s attempt %d/%d failed: %s",
                    action,
                    attempt,
                    self.MAX_ATTEMPTS,
                    exc,
                )
                await asyncio.sleep(self._retry_delay * attempt)

        if not isinstance(body, dict) or "result" not in body:
            raise NetworkError(f"AnkiConnect {action} returned a malformed response")
        if body.get("error"):
            raise NetworkError(f"AnkiConnect {action} failed: {body['error']}")
        return body["result"]

    async def fetch(self, date_range: DateRange) -> list[AnkiDailyStats]:
        decks = self.decks()
        if not decks:
            names = await self.invoke("deckNames")
            if not isinstance(names, list):
                raise NetworkError("AnkiConnect deckNames did not return a list")
            decks = [str(n) for n in names]
        start_id = self._day_start_epoch(date_range.start) * 1000

        rows: list[list[Any]] = []
        for deck in decks:
            result = await self.invoke("cardReviews", deck=deck, startID=start_id)
            if not isinstance(result, list):
                raise NetworkError(f"AnkiConnect cardReviews for {deck} did not return a list")
            rows.extend(result)

        return self.aggregate_reviews(rows, date_range)

    def aggregate_reviews(
        self, rows: list[list[Any]], date_range: DateRange
    ) -> list[AnkiDailyStats]:
        """Sum review rows into one AnkiDailyStats per UTC day inside ``date_range``.

        A review counts as correct when any button other than Again (1) was
        pressed.
        """
        totals: dict[date, dict[str, int]] = defaultdict(
            lambda: {"reviews": 0, "duration_ms": 0, "correct": 0, "new": 0}
        )
        for row in rows:
            if not isinstance(row, (list, tuple)) or len(row) <= _REVIEW_TYPE:
                logger.warning("AnkiConnect: skipping malformed review row %r", row)
                continue
            review_ms = self._safe_int(row[_REVIEW_TIME])
            if review_ms is None:
                continue
            day = datetime.fromtimestamp(review_ms / 1000, tz=timezone.utc).date()
            if day not in date_range:
                continue
            bucket = totals[day]
            bucket["reviews"] += 1
            bucket["duration_ms"] += max(self._safe_int(row[_DURATION]) or 0, 0)
            if (self._safe_int(row[_BUTTON]) or 0) >= 2:
                bucket["correct"] += 1
            if self._safe_int(row[_REVIEW_TYPE]) == _REVIEW_TYPE_LEARNING:
                bucket["new"] += 1

        return [
            AnkiDailyStats(
                day=day,
                review_count=t["reviews"],
                study_time_seconds=t["duration_ms"] // 1000,
                correct_count=t["correct"],
                new_cards_count=t["new"],
            )
            for day, t in sorted(totals.items())
        ]

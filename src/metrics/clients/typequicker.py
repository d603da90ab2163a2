"""TypeQuicker typing-practice client.

API base: https://api.typequicker.com

Endpoint used:
    GET /stats/{username}?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD

Response shape::

    {"activity": {"2025-01-02": [
        {"wpm": 85.0, "trueAccuracy": 97.5, "accuracy": 96.0,
         "timeTyping": 600000, "primaryMode": "words", ...},
        ...
    ]}}

``activity`` is null for a user with no sessions in the range.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Any

from src.metrics.cache.gaps import DateRange
from src.metrics.clients._http import HttpRemoteClient
from src.metrics.errors import NetworkError
from src.metrics.records import ModeStats, TypeQuickerStats

logger = logging.getLogger("goalsync.metrics.clients.typequicker")

_TYPEQUICKER_API_BASE = "https://api.typequicker.com"
_MS_PER_MINUTE = 60_000


def _weighted_mean(pairs: list[tuple[float, float]]) -> float:
    """Mean of (value, weight) pairs; plain mean when every weight is zero."""
    if not pairs:
        return 0.0
    total_weight = sum(w for _, w in pairs)
    if total_weight <= 0:
        return sum(v for v, _ in pairs) / len(pairs)
    return sum(v * w for v, w in pairs) / total_weight


class TypeQuickerClient(HttpRemoteClient):
    """Daily typing statistics from TypeQuicker.

    Credentials: ``username``.  Options: ``base_url`` (defaults to the public API).
    """

    SOURCE_ID = "typequicker"
    DISPLAY_NAME = "TypeQuicker"
    RECORD_TYPE = TypeQuickerStats
    REQUIRED_CREDENTIALS = ("username",)

    async def fetch(self, date_range: DateRange) -> list[TypeQuickerStats]:
        username = self.credential("username")
        base = self.option("base_url", _TYPEQUICKER_API_BASE).rstrip("/")
        body = await self._get(
            f"{base}/stats/{username}",
            params={
                "start_date": date_range.start.isoformat(),
                "end_date": date_range.end.isoformat(),
            },
        )
        if not isinstance(body, dict):
            raise NetworkError(f"{self.DISPLAY_NAME} returned an unexpected payload")

        activity = body.get("activity") or {}
        if not isinstance(activity, dict):
            raise NetworkError(f"{self.DISPLAY_NAME} activity is not an object")
        records: list[TypeQuickerStats] = []
        for day_str, sessions in activity.items():
            try:
                day = date.fromisoformat(day_str)
            except (TypeError, ValueError):
                logger.warning("TypeQuicker: skipping unparseable day %r", day_str)
                continue
            sessions = sessions or []
            if not isinstance(sessions, list) or not all(isinstance(s, dict) for s in sessions):
                raise NetworkError(f"{self.DISPLAY_NAME} sessions for {day_str} are malformed")
            if day not in date_range or not sessions:
                continue
            records.append(self.aggregate_day(day, sessions))

        records.sort(key=lambda r: r.day)
        logger.debug("TypeQuicker: %d day(s) for %s", len(records), date_range)
        return records

    def aggregate_day(self, day: date, sessions: list[dict[str, Any]]) -> TypeQuickerStats:
        """Collapse one day of sessions into a TypeQuickerStats record.

        WPM and accuracy are weighted by time spent typing.  Accuracy prefers
        ``trueAccuracy`` (which counts corrected errors) over ``accuracy``.
        """
        overall_wpm: list[tuple[float, float]] = []
        overall_acc: list[tuple[float, float]] = []
        total_ms = 0
        per_mode: dict[str, list[dict[str, Any]]] = defaultdict(list)

        for session in sessions:
            ms = self._safe_int(session.get("timeTyping")) or 0
            wpm = self._safe_float(session.get("wpm"))
            accuracy = self._safe_float(session.get("trueAccuracy"))
            if accuracy is None:
                accuracy = self._safe_float(session.get("accuracy"))
            total_ms += ms
            if wpm is not None:
                overall_wpm.append((wpm, ms))
            if accuracy is not None:
                overall_acc.append((accuracy, ms))
            per_mode[str(session.get("primaryMode") or "unknown")].append(session)

        by_mode = [self._aggregate_mode(mode, items) for mode, items in per_mode.items()]
        by_mode.sort(key=lambda m: (-m.practice_time_minutes, m.mode))

        return TypeQuickerStats(
            day=day,
            words_per_minute=round(_weighted_mean(overall_wpm), 2),
            accuracy=round(_weighted_mean(overall_acc), 2),
            practice_time_minutes=total_ms // _MS_PER_MINUTE,
            sessions_count=len(sessions),
            by_mode=tuple(by_mode),
        )

    def _aggregate_mode(self, mode: str, sessions: list[dict[str, Any]]) -> ModeStats:
        wpm: list[tuple[float, float]] = []
        acc: list[tuple[float, float]] = []
        total_ms = 0
        for s in sessions:
            ms = self._safe_int(s.get("timeTyping")) or 0
            total_ms += ms
            value = self._safe_float(s.get("wpm"))
            if value is not None:
                wpm.append((value, ms))
            accuracy = self._safe_float(s.get("trueAccuracy"))
            if accuracy is None:
                accuracy = self._safe_float(s.get("accuracy"))
            if accuracy is not None:
                acc.append((accuracy, ms))
        return ModeStats(
            mode=mode,
            words_per_minute=round(_weighted_mean(wpm), 2),
            accuracy=round(_weighted_mean(acc), 2),
            practice_time_minutes=total_ms // _MS_PER_MINUTE,
            sessions_count=len(sessions),
        )

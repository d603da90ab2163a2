"""AtCoder clients: contest history and submissions.

Endpoints used:
    https://atcoder.jp/users/{username}/history/json
        Full contest history as a JSON list (one document, no paging).
    https://kenkoooo.com/atcoder/atcoder-api/v3/user/submissions?user=&from_second=
        Up to 500 submissions at or after ``from_second``, oldest first.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from src.metrics.cache.gaps import DateRange
from src.metrics.clients._http import HttpRemoteClient
from src.metrics.errors import NetworkError
from src.metrics.records import AtCoderContestResult, AtCoderSubmission

logger = logging.getLogger("goalsync.metrics.clients.atcoder")

_ATCODER_BASE = "https://atcoder.jp"
_KENKOOOO_BASE = "https://kenkoooo.com/atcoder/atcoder-api/v3"

# kenkoooo returns at most this many submissions per request
_SUBMISSIONS_PAGE_SIZE = 500
_MAX_SUBMISSION_PAGES = 50


def _parse_end_time(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class AtCoderContestClient(HttpRemoteClient):
    """Rated-contest history.  Credentials: ``username``."""

    SOURCE_ID = "atcoder"
    DISPLAY_NAME = "AtCoder"
    RECORD_TYPE = AtCoderContestResult
    REQUIRED_CREDENTIALS = ("username",)
    LATEST_LOOKBACK_DAYS = 3650

    async def fetch(self, date_range: DateRange) -> list[AtCoderContestResult]:
        username = self.credential("username")
        body = await self._get(f"{_ATCODER_BASE}/users/{username}/history/json")
        if not isinstance(body, list):
            raise NetworkError(f"{self.DISPLAY_NAME} history is not a list")
        results = self.parse_history(body)
        return [r for r in results if r.record_date in date_range]

    def parse_history(self, rows: list[dict[str, Any]]) -> list[AtCoderContestResult]:
        """Turn raw history rows into records, oldest first.

        Rows missing an end time or contest name are skipped; a row that is
        not an object at all raises NetworkError.

        ``highest_rating`` and ``contests_participated`` are running values
        over rated contests, so every record carries the state as of that
        contest.
        """
        parsed: list[tuple[datetime, dict[str, Any]]] = []
        for row in rows:
            if not isinstance(row, dict):
                raise NetworkError(f"{self.DISPLAY_NAME} history row is not an object: {row!r}")
            end_time = _parse_end_time(row.get("EndTime"))
            if end_time is None or not row.get("ContestScreenName"):
                logger.warning("AtCoder: skipping malformed history row %r", row)
                continue
            parsed.append((end_time, row))
        parsed.sort(key=lambda item: item[0])

        highest = 0
        participated = 0
        results: list[AtCoderContestResult] = []
        for end_time, row in parsed:
            is_rated = bool(row.get("IsRated"))
            new_rating = self._safe_int(row.get("NewRating")) or 0
            if is_rated:
                participated += 1
                highest = max(highest, new_rating)
            results.append(
                AtCoderContestResult(
                    contest_screen_name=str(row["ContestScreenName"]),
                    contest_name=str(row.get("ContestNameEn") or row.get("ContestName") or ""),
                    end_time=end_time,
                    is_rated=is_rated,
                    place=self._safe_int(row.get("Place")) or 0,
                    old_rating=self._safe_int(row.get("OldRating")) or 0,
                    new_rating=new_rating,
                    performance=self._safe_int(row.get("Performance")) or 0,
                    highest_rating=highest,
                    contests_participated=participated,
                )
            )
        return results


class AtCoderSubmissionClient(HttpRemoteClient):
    """Submissions via the kenkoooo AtCoder Problems API.  Credentials: ``username``."""

    SOURCE_ID = "atcoder_submissions"
    DISPLAY_NAME = "AtCoder submissions"
    RECORD_TYPE = AtCoderSubmission
    REQUIRED_CREDENTIALS = ("username",)

    async def fetch(self, date_range: DateRange) -> list[AtCoderSubmission]:
        username = self.credential("username")
        from_second = self._day_start_epoch(date_range.start)
        until_second = self._day_end_epoch(date_range.end)

        submissions: dict[int, AtCoderSubmission] = {}
        for _ in range(_MAX_SUBMISSION_PAGES):
            page = await self._get(
                f"{_KENKOOOO_BASE}/user/submissions",
                params={"user": username, "from_second": from_second},
            )
            if not isinstance(page, list):
                raise NetworkError(f"{self.DISPLAY_NAME} page is not a list")
            if not page:
                break

            last_epoch = from_second
            for row in page:
                if not isinstance(row, dict):
                    raise NetworkError(f"{self.DISPLAY_NAME} row is not an object: {row!r}")
                submission = self._parse_submission(row)
                if submission is None:
                    continue
                last_epoch = max(last_epoch, submission.epoch_second)
                if submission.epoch_second < until_second:
                    submissions[submission.id] = submission

            if len(page) < _SUBMISSIONS_PAGE_SIZE or last_epoch >= until_second:
                break
            from_second = last_epoch + 1
        else:
            logger.warning(
                "AtCoder: stopped paging submissions for %s after %d pages",
                date_range,
                _MAX_SUBMISSION_PAGES,
            )

        return sorted(submissions.values(), key=lambda s: (s.epoch_second, s.id))

    def _parse_submission(self, row: dict[str, Any]) -> AtCoderSubmission | None:
        sub_id = self._safe_int(row.get("id"))
        epoch = self._safe_int(row.get("epoch_second"))
        if sub_id is None or epoch is None:
            logger.warning("AtCoder: skipping malformed submission %r", row)
            return None
        return AtCoderSubmission(
            id=sub_id,
            epoch_second=epoch,
            problem_id=str(row.get("problem_id") or ""),
            contest_id=str(row.get("contest_id") or ""),
            user_id=str(row.get("user_id") or ""),
            language=str(row.get("language") or ""),
            point=self._safe_float(row.get("point")) or 0.0,
            length=self._safe_int(row.get("length")) or 0,
            result=str(row.get("result") or ""),
            execution_time=self._safe_int(row.get("execution_time")),
        )

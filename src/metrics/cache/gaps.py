"""Date ranges and missing-range calculation.

The gap calculator is what keeps a sync cheap: given the days a record kind
already has in the cache, it returns only the contiguous runs of days that
still need a network request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Iterator

ONE_DAY = timedelta(days=1)


def to_record_date(value: date | datetime) -> date:
    """Normalize a date or datetime to its calendar day.

    Aware datetimes are converted to UTC first so the same instant always
    lands on the same day.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of calendar days.

    Attributes:
        start: First day of the range.
        end:   Last day of the range (inclusive).
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", to_record_date(self.start))
        object.__setattr__(self, "end", to_record_date(self.end))
        if self.start > self.end:
            raise ValueError(f"DateRange start {self.start} is after end {self.end}")

    @classmethod
    def trailing(cls, days: int, today: date) -> DateRange:
        """The ``days`` days ending on (and including) ``today``."""
        if days < 1:
            raise ValueError(f"trailing window must be at least 1 day, got {days}")
        return cls(today - timedelta(days=days - 1), today)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def dates(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += ONE_DAY

    def __contains__(self, item: object) -> bool:
        if not isinstance(item, date):
            return False
        return self.start <= to_record_date(item) <= self.end

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


def missing_ranges(
    start: date | datetime,
    end: date | datetime,
    covered: Iterable[date],
) -> list[DateRange]:
    """Return the minimal ordered list of uncovered sub-ranges of [start, end].

    Walks the request day by day.  A run of uncovered days is extended until a
    covered day closes it; a run still open at the end of the request is
    closed on ``end``.

    Args:
        start:   First requested day.
        end:     Last requested day (inclusive).
        covered: Days already present in the cache.

    Returns:
        Ordered, non-overlapping ranges.  Empty when everything is covered or
        when ``start`` is after ``end``.
    """
    first = to_record_date(start)
    last = to_record_date(end)
    if first > last:
        return []

    covered_days = {to_record_date(d) for d in covered}
    gaps: list[DateRange] = []
    run_start: date | None = None

    day = first
    while day <= last:
        if day in covered_days:
            if run_start is not None:
                gaps.append(DateRange(run_start, day - ONE_DAY))
                run_start = None
        elif run_start is None:
            run_start = day
        day += ONE_DAY

    if run_start is not None:
        gaps.append(DateRange(run_start, last))
    return gaps

"""Concrete cacheable record kinds, one per provider metric collection.

All records are frozen dataclasses.  Nested collections are tuples so a
record never changes after it has been fetched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone

from src.metrics.base import CacheableRecord, DailyRecord, MetricInfo
from src.metrics.cache.gaps import to_record_date


# ---------------------------------------------------------------------------
# TypeQuicker (typing practice)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModeStats:
    """Per-mode breakdown of one day of typing practice.

    Attributes:
        mode:                  Primary practice mode reported by TypeQuicker.
        words_per_minute:      Time-weighted average WPM for the mode.
        accuracy:              Time-weighted average accuracy (0–100).
        practice_time_minutes: Whole minutes practised in the mode.
        sessions_count:        Number of sessions in the mode.
    """

    mode: str
    words_per_minute: float
    accuracy: float
    practice_time_minutes: int
    sessions_count: int


@dataclass(frozen=True)
class TypeQuickerStats(DailyRecord):
    """One day of typing practice.

    Attributes:
        day:                   Calendar day of the sessions.
        words_per_minute:      Time-weighted average WPM.
        accuracy:              Time-weighted average accuracy (0–100).
        practice_time_minutes: Whole minutes practised.
        sessions_count:        Number of sessions.
        by_mode:               Breakdown per mode, most practised first.
    """

    PROVIDER = "typequicker"
    RECORD_TYPE = "stats"
    METRICS = (
        MetricInfo("wpm", "Words per minute", "wpm"),
        MetricInfo("accuracy", "Accuracy", "%"),
        MetricInfo("practice_time", "Practice time", "min"),
        MetricInfo("sessions", "Sessions", "sessions"),
    )

    day: date
    words_per_minute: float
    accuracy: float
    practice_time_minutes: int
    sessions_count: int
    by_mode: tuple[ModeStats, ...] = ()

    def metric_value(self, key: str) -> float | None:
        if key == "wpm":
            return self.words_per_minute
        if key == "accuracy":
            return self.accuracy
        if key == "practice_time":
            return float(self.practice_time_minutes)
        if key == "sessions":
            return float(self.sessions_count)
        return None


# ---------------------------------------------------------------------------
# AtCoder (competitive programming)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AtCoderSubmission(CacheableRecord):
    """A single AtCoder submission as reported by the kenkoooo API.

    Keyed by submission id; attributed to the UTC day it was submitted.
    """

    PROVIDER = "atcoder"
    RECORD_TYPE = "submission"
    METRICS = (
        MetricInfo("submissions", "Submissions", "submissions"),
        MetricInfo("accepted", "Accepted submissions", "AC"),
        MetricInfo("points", "Points", "pt"),
    )

    id: int
    epoch_second: int
    problem_id: str
    contest_id: str
    user_id: str
    language: str
    point: float
    length: int
    result: str
    execution_time: int | None = None

    @property
    def discriminator(self) -> str:
        return str(self.id)

    @property
    def submitted_at(self) -> datetime:
        return datetime.fromtimestamp(self.epoch_second, tz=timezone.utc)

    @property
    def record_date(self) -> date:
        return to_record_date(self.submitted_at)

    @property
    def accepted(self) -> bool:
        return self.result == "AC"

    def metric_value(self, key: str) -> float | None:
        if key == "submissions":
            return 1.0
        if key == "accepted":
            return 1.0 if self.accepted else 0.0
        if key == "points":
            return self.point
        return None


@dataclass(frozen=True)
class AtCoderContestResult(CacheableRecord):
    """One entry of a user's AtCoder contest history.

    Attributes:
        contest_screen_name:   Contest slug with host, e.g. 'abc300.contest.atcoder.jp'.
        contest_name:          Display name of the contest.
        end_time:              When the contest ended (aware datetime).
        is_rated:              Whether the contest was rated for the user.
        place:                 Final standing.
        old_rating:            Rating before the contest.
        new_rating:            Rating after the contest.
        performance:           Contest performance.
        highest_rating:        Highest rating reached up to and including this contest.
        contests_participated: Rated contests entered up to and including this one.
    """

    PROVIDER = "atcoder"
    RECORD_TYPE = "contest"
    METRICS = (
        MetricInfo("rating", "Rating", "rating"),
        MetricInfo("highest_rating", "Highest rating", "rating"),
        MetricInfo("contests_participated", "Rated contests", "contests"),
        MetricInfo("performance", "Performance", "perf"),
    )

    contest_screen_name: str
    contest_name: str
    end_time: datetime
    is_rated: bool
    place: int
    old_rating: int
    new_rating: int
    performance: int
    highest_rating: int
    contests_participated: int

    @property
    def discriminator(self) -> str:
        return self.contest_screen_name

    @property
    def record_date(self) -> date:
        return to_record_date(self.end_time)

    def metric_value(self, key: str) -> float | None:
        if key == "rating":
            return float(self.new_rating)
        if key == "highest_rating":
            return float(self.highest_rating)
        if key == "contests_participated":
            return float(self.contests_participated)
        if key == "performance":
            return float(self.performance)
        return None


# ---------------------------------------------------------------------------
# Anki (flashcards via AnkiConnect)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AnkiDailyStats(DailyRecord):
    """Review activity across the tracked decks for one day.

    Attributes:
        day:                Calendar day (UTC) of the reviews.
        review_count:       Reviews answered.
        study_time_seconds: Total answer time in seconds.
        correct_count:      Reviews answered Hard, Good or Easy.
        new_cards_count:    Reviews of cards in the learning queue for the first time.
    """

    PROVIDER = "anki"
    RECORD_TYPE = "daily_stats"
    METRICS = (
        MetricInfo("reviews", "Reviews", "cards"),
        MetricInfo("study_time", "Study time", "min"),
        MetricInfo("retention", "Retention", "%"),
        MetricInfo("new_cards", "New cards", "cards"),
    )

    day: date
    review_count: int
    study_time_seconds: int
    correct_count: int
    new_cards_count: int

    @property
    def retention(self) -> float | None:
        if self.review_count <= 0:
            return None
        return self.correct_count / self.review_count * 100.0

    def metric_value(self, key: str) -> float | None:
        if key == "reviews":
            return float(self.review_count)
        if key == "study_time":
            return self.study_time_seconds / 60.0
        if key == "retention":
            return self.retention
        if key == "new_cards":
            return float(self.new_cards_count)
        return None


# ---------------------------------------------------------------------------
# Zotero (reference manager)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ZoteroDailyStats(DailyRecord):
    """Reading activity recorded in a Zotero library on one day.

    Attributes:
        day:              Calendar day (UTC) the items were added.
        annotation_count: Highlights and comments added to attachments.
        note_count:       Standalone and child notes added.
    """

    PROVIDER = "zotero"
    RECORD_TYPE = "daily_stats"
    METRICS = (
        MetricInfo("annotations", "Annotations", "items"),
        MetricInfo("notes", "Notes", "items"),
    )

    day: date
    annotation_count: int = 0
    note_count: int = 0

    def metric_value(self, key: str) -> float | None:
        if key == "annotations":
            return float(self.annotation_count)
        if key == "notes":
            return float(self.note_count)
        return None


# ---------------------------------------------------------------------------
# Tasks (on-device task timer)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskSession:
    """One timed work session on a task."""

    task_id: str
    task_name: str
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> float:
        return max((self.end - self.start).total_seconds(), 0.0) / 60.0


@dataclass(frozen=True)
class TaskDailySummary(DailyRecord):
    """All task-timer sessions that started on one day."""

    PROVIDER = "tasks"
    RECORD_TYPE = "daily"
    METRICS = (
        MetricInfo("task_time", "Time on tasks", "min"),
        MetricInfo("task_sessions", "Task sessions", "sessions"),
    )

    day: date
    sessions: tuple[TaskSession, ...] = ()

    @property
    def total_minutes(self) -> float:
        return sum(s.duration_minutes for s in self.sessions)

    def metric_value(self, key: str) -> float | None:
        if key == "task_time":
            return self.total_minutes
        if key == "task_sessions":
            return float(len(self.sessions))
        return None


ALL_RECORD_TYPES: tuple[type[CacheableRecord], ...] = (
    TypeQuickerStats,
    AtCoderSubmission,
    AtCoderContestResult,
    AnkiDailyStats,
    ZoteroDailyStats,
    TaskDailySummary,
)

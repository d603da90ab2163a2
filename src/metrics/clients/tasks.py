"""On-device task timer.

Not a network provider: sessions are recorded locally as the user starts and
stops timers, and ``fetch`` summarizes them per day.  It still goes through
the caching wrapper so task data is queried and retained like every other
provider.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime

from src.metrics.base import DataSourceSettings, RemoteClient
from src.metrics.cache.gaps import DateRange, to_record_date
from src.metrics.records import TaskDailySummary, TaskSession

logger = logging.getLogger("goalsync.metrics.clients.tasks")


class TaskTimerClient(RemoteClient):
    """Local task-timer sessions summarized into TaskDailySummary records."""

    SOURCE_ID = "tasks"
    DISPLAY_NAME = "Task timer"
    RECORD_TYPE = TaskDailySummary

    def __init__(self) -> None:
        super().__init__()
        self._settings = DataSourceSettings(provider=self.SOURCE_ID)
        self._sessions: list[TaskSession] = []

    def is_configured(self) -> bool:
        return True

    def clear_configuration(self) -> None:
        self._settings = DataSourceSettings(provider=self.SOURCE_ID)

    def record_session(
        self, task_id: str, task_name: str, start: datetime, end: datetime
    ) -> TaskSession:
        """Record one finished timer session.

        Raises:
            ValueError: If ``end`` is before ``start``.
        """
        if end < start:
            raise ValueError(f"Session for {task_id} ends before it starts")
        session = TaskSession(task_id=task_id, task_name=task_name, start=start, end=end)
        self._sessions.append(session)
        logger.debug("Recorded %.1f min on %s", session.duration_minutes, task_name)
        return session

    def sessions(self) -> list[TaskSession]:
        return list(self._sessions)

    def prune_local(self, before: date) -> int:
        kept = [s for s in self._sessions if to_record_date(s.start) >= before]
        removed = len(self._sessions) - len(kept)
        self._sessions = kept
        if removed:
            logger.info("Pruned %d task session(s) started before %s", removed, before)
        return removed

    async def fetch(self, date_range: DateRange) -> list[TaskDailySummary]:
        by_day: dict[date, list[TaskSession]] = defaultdict(list)
        for session in self._sessions:
            day = to_record_date(session.start)
            if day in date_range:
                by_day[day].append(session)
        return [
            TaskDailySummary(
                day=day,
                sessions=tuple(sorted(sessions, key=lambda s: s.start)),
            )
            for day, sessions in sorted(by_day.items())
        ]

"""
Study statistics — per-category totals over an owner's sessions. Read-only.
"""

from collections.abc import Iterable
from typing import Optional

from studyplan.models.session import Category, ProgressStatus, SessionFilter, SessionInstance
from studyplan.models.stats import CategoryStats
from studyplan.store import SessionStore


def summarize(sessions: Iterable[SessionInstance]) -> dict[Category, CategoryStats]:
    """Group sessions by category.

    Durations count completed sessions only, and the average is taken over
    completed sessions; a category with none averages 0.
    """
    stats: dict[Category, CategoryStats] = {}
    for session in sessions:
        entry = stats.setdefault(session.category, CategoryStats())
        entry.total_sessions += 1
        if session.progress.status is ProgressStatus.COMPLETED:
            entry.completed_sessions += 1
            entry.total_duration_minutes += session.progress.duration_minutes or 0.0
    for entry in stats.values():
        entry.total_duration_minutes = round(entry.total_duration_minutes, 2)
        if entry.completed_sessions:
            entry.average_duration_minutes = round(entry.total_duration_minutes / entry.completed_sessions, 2)
    return stats


def overall(stats: dict[Category, CategoryStats]) -> CategoryStats:
    """Totals across every category."""
    total = CategoryStats(
        total_sessions=sum(s.total_sessions for s in stats.values()),
        completed_sessions=sum(s.completed_sessions for s in stats.values()),
        total_duration_minutes=round(sum(s.total_duration_minutes for s in stats.values()), 2),
    )
    if total.completed_sessions:
        total.average_duration_minutes = round(total.total_duration_minutes / total.completed_sessions, 2)
    return total


class StatisticsAggregator:
    def __init__(self, store: SessionStore):
        self._store = store

    async def summarize(self, owner_id: str, filter: Optional[SessionFilter] = None) -> dict[Category, CategoryStats]:
        return summarize(await self._store.find(owner_id, filter))

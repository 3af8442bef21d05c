"""
studyplan — recurring study-session scheduling and progress tracking.

Expands study-session definitions into concrete sessions, arms a reminder for
each, and tracks every session through its completion lifecycle.
"""

from studyplan.planner import AsyncStudyPlanner, StudyPlanner
from studyplan.clock import ManualClock, SystemClock
from studyplan.store import InMemorySessionStore, JsonFileSessionStore, SessionStore
from studyplan.notifications import InboxSink, LoggingSink, NotificationSink, WebhookSink
from studyplan.errors import (
    StudyPlanError,
    ValidationError,
    InvalidFrequency,
    InvalidTransition,
    NotFound,
    Conflict,
    StoreFailure,
    NotificationFailure,
)
from studyplan.models.session import (
    Category,
    Frequency,
    ProgressStatus,
    SessionDefinition,
    SessionFilter,
    SessionInstance,
    SessionPatch,
    ProgressUpdate,
)
from studyplan.models.stats import CategoryStats

__version__ = "0.1.0"
__all__ = [
    "AsyncStudyPlanner",
    "StudyPlanner",
    "ManualClock",
    "SystemClock",
    "SessionStore",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "NotificationSink",
    "LoggingSink",
    "InboxSink",
    "WebhookSink",
    "StudyPlanError",
    "ValidationError",
    "InvalidFrequency",
    "InvalidTransition",
    "NotFound",
    "Conflict",
    "StoreFailure",
    "NotificationFailure",
    "Category",
    "Frequency",
    "ProgressStatus",
    "SessionDefinition",
    "SessionFilter",
    "SessionInstance",
    "SessionPatch",
    "ProgressUpdate",
    "CategoryStats",
]

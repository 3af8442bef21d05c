"""
Study session models — definitions, persisted instances, edits and progress updates.
"""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from studyplan.clock import ensure_aware
from studyplan.errors import InvalidFrequency, ValidationError

DEFAULT_LEAD_MINUTES = 30


class Category(str, Enum):
    EXAM_PREP = "exam_prep"
    HOMEWORK = "homework"
    READING = "reading"
    REVIEW = "review"
    PRACTICE = "practice"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ProgressStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"


TERMINAL_STATUSES = {ProgressStatus.COMPLETED, ProgressStatus.MISSED}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_aware(value) if value is not None else None


def _describe_errors(exc: PydanticValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}" for err in exc.errors()]


class Recurrence(BaseModel):
    frequency: Frequency
    until: datetime

    @field_validator("until")
    @classmethod
    def normalize_until(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class ReminderSpec(BaseModel):
    lead_minutes: int = Field(default=DEFAULT_LEAD_MINUTES, ge=0)


class SessionDefinition(BaseModel):
    """A user-declared study session, single or recurring. Never persisted as-is."""
    title: str
    category: Category
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    course_id: Optional[str] = None
    recurrence: Optional[Recurrence] = None
    reminder: Optional[ReminderSpec] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _aware(value)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @model_validator(mode="after")
    def check_window(self) -> "SessionDefinition":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.recurrence is not None and self.recurrence.until.date() < self.start_time.date():
            raise ValueError("recurrence.until must not be before the day of start_time")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @classmethod
    def parse(cls, data: Any) -> "SessionDefinition":
        """Validate raw input, raising studyplan errors instead of pydantic's."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            for err in e.errors():
                if tuple(err["loc"]) == ("recurrence", "frequency"):
                    raise InvalidFrequency(err.get("input")) from e
            problems = _describe_errors(e)
            raise ValidationError(
                f"Invalid session definition: {'; '.join(problems)}",
                details={"errors": problems},
            ) from e


class Reminder(BaseModel):
    lead_minutes: int = Field(ge=0)
    fired: bool = False


class Progress(BaseModel):
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    duration_minutes: Optional[float] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


class SessionInstance(BaseModel):
    """One concrete, time-boxed occurrence of a study session."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    course_id: Optional[str] = None
    title: str
    category: Category
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    recurrence_group_id: Optional[str] = None
    reminder: Optional[Reminder] = None
    progress: Progress = Field(default_factory=Progress)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _aware(value)

    @model_validator(mode="after")
    def check_window(self) -> "SessionInstance":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def window_minutes(self) -> float:
        return self.duration.total_seconds() / 60


class SessionPatch(BaseModel):
    """Partial edit. Only fields explicitly set are applied; reminder=None removes the reminder."""
    title: Optional[str] = None
    category: Optional[Category] = None
    description: Optional[str] = None
    course_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    reminder: Optional[ReminderSpec] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _aware(value)

    @classmethod
    def parse(cls, data: Any) -> "SessionPatch":
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            problems = _describe_errors(e)
            raise ValidationError(f"Invalid session patch: {'; '.join(problems)}", details={"errors": problems}) from e

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class ProgressUpdate(BaseModel):
    status: ProgressStatus
    notes: Optional[str] = None
    duration_minutes: Optional[float] = Field(default=None, ge=0)

    @classmethod
    def parse(cls, data: Any) -> "ProgressUpdate":
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            problems = _describe_errors(e)
            raise ValidationError(f"Invalid progress update: {'; '.join(problems)}", details={"errors": problems}) from e


class SessionFilter(BaseModel):
    """Filters for listing and statistics. start_from/start_to bound start_time inclusively."""
    start_from: Optional[datetime] = None
    start_to: Optional[datetime] = None
    course_id: Optional[str] = None
    category: Optional[Category] = None
    status: Optional[ProgressStatus] = None
    recurrence_group_id: Optional[str] = None

    @field_validator("start_from", "start_to")
    @classmethod
    def normalize_bounds(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _aware(value)

    def matches(self, session: SessionInstance) -> bool:
        if self.start_from is not None and session.start_time < self.start_from:
            return False
        if self.start_to is not None and session.start_time > self.start_to:
            return False
        if self.course_id is not None and session.course_id != self.course_id:
            return False
        if self.category is not None and session.category != self.category:
            return False
        if self.status is not None and session.progress.status != self.status:
            return False
        if self.recurrence_group_id is not None and session.recurrence_group_id != self.recurrence_group_id:
            return False
        return True

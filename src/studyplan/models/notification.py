"""
Notification models — what the reminder scheduler hands to a notification sink.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from studyplan.models.session import Category

REMINDER_TITLE = "Study Session Reminder"
REMINDER_TYPE = "study_reminder"


class ReminderPayload(BaseModel):
    """Payload for a study session reminder."""
    session_id: str
    owner_id: str
    title: str
    category: Category
    lead_minutes: int
    start_time: datetime
    type: str = REMINDER_TYPE

    @property
    def message(self) -> str:
        return f'Your {self.category.value} session "{self.title}" starts in {self.lead_minutes} minutes'


class Notification(BaseModel):
    """A delivered notification as kept by an inbox."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    title: str = REMINDER_TITLE
    message: str
    type: str = REMINDER_TYPE
    session_id: Optional[str] = None
    read: bool = False
    created_at: datetime

"""
Recurrence — calendar arithmetic for repeating study sessions and expansion of a
definition into concrete session instances.

Monthly recurrence keeps the seed's day-of-month and clamps to the last day of
shorter months (Jan 31 -> Feb 29 -> Mar 31), it never rolls over into the next month.
recurrence.until names the last calendar day on which an occurrence may start.
"""

import calendar
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from studyplan.errors import InvalidFrequency, ValidationError
from studyplan.models.session import Frequency, Reminder, SessionDefinition, SessionInstance
from studyplan.store import SessionStore

logger = logging.getLogger("studyplan.recurrence")

# Upper bound on instances generated from one definition.
MAX_OCCURRENCES = 1000

# Shortest possible gap between two occurrences, per frequency.
PERIOD_LOWER_BOUND = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.MONTHLY: timedelta(days=28),
}


def coerce_frequency(frequency: Union[Frequency, str]) -> Frequency:
    try:
        return Frequency(frequency)
    except ValueError:
        raise InvalidFrequency(frequency) from None


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def occurrence(seed: datetime, frequency: Union[Frequency, str], index: int) -> datetime:
    """Return the index-th occurrence counted from seed (index 0 is seed itself)."""
    freq = coerce_frequency(frequency)
    if index < 0:
        raise ValueError("occurrence index must be >= 0")
    if freq is Frequency.DAILY:
        return seed + timedelta(days=index)
    if freq is Frequency.WEEKLY:
        return seed + timedelta(weeks=index)
    return add_months(seed, index)


def next_occurrence(current: datetime, frequency: Union[Frequency, str]) -> datetime:
    return occurrence(current, frequency, 1)


def validate_window(start: datetime, end: datetime, until: Optional[datetime] = None) -> None:
    if end <= start:
        raise ValidationError("end_time must be after start_time", details={"start_time": start.isoformat(), "end_time": end.isoformat()})
    if until is not None and until.date() < start.date():
        raise ValidationError("recurrence.until must not be before the day of start_time", details={"start_time": start.isoformat(), "until": until.isoformat()})


def max_occurrences(start: datetime, until: datetime, frequency: Union[Frequency, str]) -> int:
    """Upper bound on the number of occurrences from start through the day of until."""
    period = PERIOD_LOWER_BOUND[coerce_frequency(frequency)]
    return (until.date() - start.date()).days // period.days + 1


def expand(definition: Union[SessionDefinition, dict[str, Any]], owner_id: str, *,
           group_id: Optional[str] = None) -> list[SessionInstance]:
    """Turn a definition into its concrete session instances.

    A single session yields exactly one instance matching the definition's window.
    A recurring one yields every occurrence starting on or before the calendar
    day of recurrence.until,
    all sharing one recurrence_group_id and the definition's duration.
    """
    definition = SessionDefinition.parse(definition)
    validate_window(
        definition.start_time, definition.end_time,
        definition.recurrence.until if definition.recurrence else None,
    )

    def build(start: datetime, recurrence_group_id: Optional[str]) -> SessionInstance:
        return SessionInstance(
            owner_id=owner_id,
            course_id=definition.course_id,
            title=definition.title,
            category=definition.category,
            description=definition.description,
            start_time=start,
            end_time=start + definition.duration,
            recurrence_group_id=recurrence_group_id,
            reminder=Reminder(lead_minutes=definition.reminder.lead_minutes) if definition.reminder else None,
        )

    if definition.recurrence is None:
        return [build(definition.start_time, None)]

    frequency = coerce_frequency(definition.recurrence.frequency)
    until = definition.recurrence.until
    last_day = until.date()
    if max_occurrences(definition.start_time, until, frequency) > MAX_OCCURRENCES:
        raise ValidationError(
            f"Recurrence produces more than {MAX_OCCURRENCES} sessions",
            details={"frequency": frequency.value, "until": until.isoformat()},
        )

    group_id = group_id or str(uuid.uuid4())
    instances: list[SessionInstance] = []
    previous: Optional[datetime] = None
    cursor = definition.start_time
    index = 0
    while cursor.date() <= last_day:
        if previous is not None and cursor <= previous:
            logger.warning("Recurrence cursor did not advance past %s (%s), stopping", previous, frequency.value)
            break
        instances.append(build(cursor, group_id))
        previous = cursor
        index += 1
        cursor = occurrence(definition.start_time, frequency, index)

    logger.debug("Expanded %s recurrence into %d sessions (group %s)", frequency.value, len(instances), group_id)
    return instances


class RecurrenceExpander:
    """Expands a definition and persists the result as one unit."""

    def __init__(self, store: SessionStore):
        self._store = store

    async def materialize(self, definition: Union[SessionDefinition, dict[str, Any]], owner_id: str) -> list[SessionInstance]:
        instances = expand(definition, owner_id)
        if instances[0].recurrence_group_id is None:
            return [await self._store.create(instances[0])]
        return await self._store.bulk_create(instances)


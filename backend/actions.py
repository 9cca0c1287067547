"""
Nexus Scheduling Agent - Action Construction
Turns parsed requests and detector findings into ScheduleActions, and finds
the calendar event an action refers to.
"""

from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from intent_parser import ScheduleActionDraft
from models import (
    ActionType, AddAction, CalendarEvent, CancelAction, EventSlot, MoveAction,
    ReplaceAction, ScheduleAction
)


def find_event(
    events: Iterable[CalendarEvent],
    title: str,
    target_date: Optional[date] = None,
    now: Optional[datetime] = None,
    event_id: Optional[str] = None,
) -> Optional[CalendarEvent]:
    """
    Locate the event an action names.

    An id wins outright. Otherwise titles are compared case-insensitively,
    exact matches before substring matches; among several candidates one on
    ``target_date`` is preferred, then the earliest one not yet finished.
    """
    events = list(events)
    if event_id:
        for event in events:
            if event.id == event_id:
                return event
        return None

    wanted = title.strip().lower()
    if not wanted:
        return None
    exact = [e for e in events if e.title.lower() == wanted]
    partial = [e for e in events if wanted in e.title.lower() or e.title.lower() in wanted]
    candidates = exact or partial
    if not candidates:
        return None

    candidates.sort(key=lambda e: (e.start, e.id))
    if target_date is not None:
        tz = now.tzinfo if now is not None else None
        on_day = [e for e in candidates if e.start.astimezone(tz).date() == target_date]
        if on_day:
            return on_day[0]
    if now is not None:
        upcoming = [e for e in candidates if e.end > now]
        if upcoming:
            return upcoming[0]
    return candidates[0]


def build_action(
    action_type: ActionType,
    draft: ScheduleActionDraft,
    events: List[CalendarEvent],
    now: datetime,
) -> ScheduleAction:
    """A pending action of ``action_type`` filled from the parsed request."""
    target_date = draft.target_date if draft.has_explicit_date else None
    common = dict(original_user_text=draft.original_text, created_at=now)

    if action_type == ActionType.ADD:
        return AddAction(
            title=draft.title,
            start=draft.start,
            duration_minutes=draft.duration_minutes,
            **common,
        )

    if action_type == ActionType.REPLACE:
        replaced = find_event(events, draft.title, target_date, now)
        # The replacement takes over the replaced slot unless the request says otherwise.
        # An unresolved target leaves the slot open until execution finds it.
        replacement_start = draft.start if draft.has_explicit_time else None
        replacement_minutes = draft.duration_minutes if draft.has_explicit_duration else None
        if replaced is not None:
            replacement_start = replacement_start or replaced.start
            replacement_minutes = replacement_minutes or replaced.duration_minutes
        return ReplaceAction(
            title=replaced.title if replaced else draft.title,
            target_event_id=replaced.id if replaced else None,
            start=replaced.start if replaced else None,
            duration_minutes=replaced.duration_minutes if replaced else None,
            replacement=EventSlot(
                title=draft.replacement_title or draft.title,
                start=replacement_start,
                duration_minutes=replacement_minutes,
            ),
            **common,
        )

    target = find_event(events, draft.title, target_date, now)
    title = target.title if target else draft.title
    target_id = target.id if target else None

    if action_type == ActionType.CANCEL:
        return CancelAction(
            title=title,
            target_event_id=target_id,
            start=target.start if target else None,
            duration_minutes=target.duration_minutes if target else None,
            **common,
        )

    return MoveAction(
        title=title,
        target_event_id=target_id,
        start=draft.start if draft.has_explicit_time else None,
        duration_minutes=draft.duration_minutes if draft.has_explicit_duration else None,
        **common,
    )


def move_for_buffer(
    earlier: CalendarEvent,
    later: CalendarEvent,
    buffer_minutes: int,
    now: datetime,
) -> MoveAction:
    """Move ``later`` so it starts ``buffer_minutes`` after ``earlier`` ends, keeping its length."""
    return MoveAction(
        title=later.title,
        target_event_id=later.id,
        start=earlier.end + timedelta(minutes=buffer_minutes),
        duration_minutes=later.duration_minutes,
        created_at=now,
    )


def study_block(title: str, start: datetime, minutes: int, now: datetime) -> AddAction:
    return AddAction(title=title, start=start, duration_minutes=minutes, created_at=now)


def find_free_slot(
    events: Iterable[CalendarEvent],
    earliest: datetime,
    minutes: int,
    buffer_minutes: int = 0,
) -> datetime:
    """First start at or after ``earliest`` where ``minutes`` fit between events, keeping a buffer."""
    candidate = earliest
    for event in sorted(events, key=lambda e: (e.start, e.end)):
        if event.end <= candidate:
            continue
        if candidate + timedelta(minutes=minutes + buffer_minutes) <= event.start:
            break
        candidate = max(candidate, event.end + timedelta(minutes=buffer_minutes))
    return candidate


def next_full_hour(moment: datetime) -> datetime:
    rounded = moment.replace(minute=0, second=0, microsecond=0)
    return rounded if rounded == moment else rounded + timedelta(hours=1)

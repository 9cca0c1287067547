"""
Nexus Scheduling Agent - Event Normalizer
Maps Google Calendar and Canvas payloads onto CalendarEvent / CourseItem.
"""

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from errors import NormalizationSkip
from models import (
    CalendarEvent, CompletionState, CourseItem, CourseItemKind,
    EventCategory
)

logger = logging.getLogger(__name__)

PROVIDER_CALENDAR = "calendar"
PROVIDER_CANVAS = "canvas"

# Ordered; the first group with a keyword inside the title wins.
CATEGORY_KEYWORDS: List[Tuple[EventCategory, Tuple[str, ...]]] = [
    (EventCategory.CLASS, ("class", "course", "lecture")),
    (EventCategory.STUDY, ("study", "homework", "assignment")),
    (EventCategory.WORKOUT, ("gym", "workout", "exercise")),
    (EventCategory.NETWORKING, ("coffee", "networking", "chat")),
    (EventCategory.RECRUITING, ("recruiting", "interview", "info session")),
    (EventCategory.BUFFER, ("buffer", "travel")),
]

SUBMITTED_STATES = ("submitted", "graded", "pending_review")


# ============================================
# HELPERS
# ============================================

def infer_category(title: str) -> EventCategory:
    lowered = title.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return EventCategory.MEETING


def parse_timestamp(value: str, tz: tzinfo) -> datetime:
    """ISO-8601 timestamp; naive values are read in ``tz``."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _midnight(day: str, tz: tzinfo) -> datetime:
    return datetime.combine(date.fromisoformat(day), time(0, 0), tzinfo=tz)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ============================================
# CALENDAR PAYLOADS
# ============================================

def _normalize_calendar_event(raw: Dict[str, Any], tz: tzinfo) -> CalendarEvent:
    event_id = _clean(raw.get("id"))
    if not event_id:
        raise NormalizationSkip("missing id")

    start_block = raw.get("start") or {}
    end_block = raw.get("end") or {}

    try:
        if start_block.get("dateTime"):
            start = parse_timestamp(start_block["dateTime"], tz)
            if not end_block.get("dateTime"):
                raise NormalizationSkip("timed event without an end", event_id)
            end = parse_timestamp(end_block["dateTime"], tz)
        elif start_block.get("date"):
            # Whole-day events run midnight to midnight; the provider's end date is exclusive
            start = _midnight(start_block["date"], tz)
            if end_block.get("date"):
                end = _midnight(end_block["date"], tz)
            else:
                end = start + timedelta(days=1)
        else:
            raise NormalizationSkip("missing start time", event_id)
    except ValueError as e:
        raise NormalizationSkip(f"unparseable timestamp ({e})", event_id)

    if end <= start:
        raise NormalizationSkip("end is not after start", event_id)

    title = _clean(raw.get("summary")) or "Untitled Event"
    return CalendarEvent(
        id=event_id,
        title=title,
        start=start,
        end=end,
        category=infer_category(title),
        location=_clean(raw.get("location")),
        description=_clean(raw.get("description")),
    )


# ============================================
# CANVAS PAYLOADS
# ============================================

def progress_from_submission(submission: Optional[Dict[str, Any]]) -> int:
    if not submission:
        return 0
    state = submission.get("workflow_state")
    if state in SUBMITTED_STATES:
        return 100
    if state == "unsubmitted":
        if submission.get("submitted_at"):
            return 50
        if submission.get("body"):
            return 25
    return 0


def completion_for(progress: int) -> CompletionState:
    if progress >= 100:
        return CompletionState.COMPLETED
    if progress > 0:
        return CompletionState.IN_PROGRESS
    return CompletionState.NOT_STARTED


def _normalize_course_item(raw: Dict[str, Any], tz: tzinfo) -> CourseItem:
    item_id = _clean(raw.get("id"))
    if not item_id:
        raise NormalizationSkip("missing id")

    try:
        kind = CourseItemKind(raw.get("kind") or CourseItemKind.ASSIGNMENT.value)
    except ValueError:
        raise NormalizationSkip(f"unknown kind {raw.get('kind')!r}", item_id)

    date_field = "posted_at" if kind == CourseItemKind.ANNOUNCEMENT else "due_at"
    anchor = None
    if raw.get(date_field):
        try:
            anchor = parse_timestamp(raw[date_field], tz)
        except ValueError as e:
            raise NormalizationSkip(f"unparseable {date_field} ({e})", item_id)

    if raw.get("progress") is not None:
        try:
            progress = max(0, min(100, int(raw["progress"])))
        except (TypeError, ValueError):
            raise NormalizationSkip("progress is not a number", item_id)
    else:
        progress = progress_from_submission(raw.get("submission"))

    return CourseItem(
        id=item_id,
        title=_clean(raw.get("name")) or _clean(raw.get("title")) or "Untitled",
        course=_clean(raw.get("course_name")) or _clean(raw.get("course")) or "",
        course_code=_clean(raw.get("course_code")),
        kind=kind,
        due_or_posted_at=anchor,
        completion_state=completion_for(progress),
        progress=progress,
        html_url=_clean(raw.get("html_url")),
        points_possible=raw.get("points_possible"),
    )


# ============================================
# PUBLIC API
# ============================================

def normalize(
    raw: Dict[str, Any],
    provider_kind: str,
    tz: tzinfo,
) -> Optional[Union[CalendarEvent, CourseItem]]:
    """
    Convert one provider record into the canonical model.

    Malformed or incomplete records are logged and dropped (None); nothing
    is ever filled in with invented timestamps.
    """
    try:
        if provider_kind == PROVIDER_CALENDAR:
            return _normalize_calendar_event(raw, tz)
        if provider_kind == PROVIDER_CANVAS:
            return _normalize_course_item(raw, tz)
        raise NormalizationSkip(f"unknown provider kind {provider_kind!r}", _clean(raw.get("id")))
    except NormalizationSkip as skip:
        logger.info(skip)
        return None
    except ValidationError as e:
        logger.info(f"Skipped record {raw.get('id')}: {e.error_count()} validation error(s)")
        return None


def normalize_events(raws: Iterable[Dict[str, Any]], tz: tzinfo) -> List[CalendarEvent]:
    events = [normalize(raw, PROVIDER_CALENDAR, tz) for raw in raws]
    return [event for event in events if event is not None]


def normalize_course_items(raws: Iterable[Dict[str, Any]], tz: tzinfo) -> List[CourseItem]:
    items = [normalize(raw, PROVIDER_CANVAS, tz) for raw in raws]
    return [item for item in items if item is not None]


def filter_course_items_from_month(items: Iterable[CourseItem], year: int, month: int) -> List[CourseItem]:
    """Items dated in the given month or later. Undated items are excluded here."""
    return [
        item for item in items
        if item.due_or_posted_at is not None
        and (item.due_or_posted_at.year, item.due_or_posted_at.month) >= (year, month)
    ]


def sort_course_items(items: Iterable[CourseItem]) -> List[CourseItem]:
    """Dated items by date, then undated ones, ties by id."""
    return sorted(
        items,
        key=lambda item: (
            item.due_or_posted_at is None,
            item.due_or_posted_at.timestamp() if item.due_or_posted_at else 0.0,
            item.id,
        ),
    )

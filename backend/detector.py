"""
Nexus Scheduling Agent - Conflict & Urgency Detector
Pure functions over normalized events and course items.
"""

from datetime import datetime, tzinfo
from typing import Iterable, List, Optional, Sequence

from models import (
    CalendarEvent, CompletionState, CourseItem, Priority,
    Recommendation, RecommendationType
)


# ============================================
# HELPERS
# ============================================

def sort_events(events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    return sorted(events, key=lambda e: (e.start, e.end, e.title, e.id))


def calculate_buffer(current: CalendarEvent, following: CalendarEvent) -> int:
    """Whole minutes between ``current`` ending and ``following`` starting. Negative means overlap."""
    return int((following.start - current.end).total_seconds() // 60)


def format_clock(moment: datetime, tz: Optional[tzinfo] = None) -> str:
    if tz is not None:
        moment = moment.astimezone(tz)
    return moment.strftime("%H:%M")


def format_minutes(minutes: int) -> str:
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"


def is_urgent(
    item: CourseItem,
    now: datetime,
    high_priority_hours: int = 24,
    medium_priority_hours: int = 72,
    progress_threshold: int = 50,
) -> bool:
    if item.completion_state == CompletionState.COMPLETED:
        return False
    # Overdue items are never urgent
    if item.due_or_posted_at is None or item.due_or_posted_at <= now:
        return False
    priority = item.priority_at(now, high_priority_hours, medium_priority_hours)
    return priority == Priority.HIGH and item.progress < progress_threshold


# ============================================
# GAP ISSUES
# ============================================

def _buffer_recommendation(current: CalendarEvent, following: CalendarEvent, tz) -> Recommendation:
    return Recommendation(
        id=f"buffer:{current.id}:{following.id}",
        type=RecommendationType.BUFFER,
        title="Add a buffer",
        description=(
            f"{current.title} ends at {format_clock(current.end, tz)} "
            f"and {following.title} starts immediately after."
        ),
        event_ids=[current.id, following.id],
        event_titles=[current.title, following.title],
        priority=Priority.MEDIUM,
    )


def _conflict_recommendation(current: CalendarEvent, following: CalendarEvent, overlap: int, tz) -> Recommendation:
    return Recommendation(
        id=f"conflict:{current.id}:{following.id}",
        type=RecommendationType.CONFLICT,
        title="Scheduling conflict",
        description=(
            f"{current.title} ({format_clock(current.start, tz)}-{format_clock(current.end, tz)}) "
            f"overlaps {following.title} ({format_clock(following.start, tz)}-"
            f"{format_clock(following.end, tz)}) by {format_minutes(overlap)}."
        ),
        event_ids=[current.id, following.id],
        event_titles=[current.title, following.title],
        priority=Priority.HIGH,
    )


def _tight_recommendation(current: CalendarEvent, following: CalendarEvent, gap: int, tz) -> Recommendation:
    return Recommendation(
        id=f"tight:{current.id}:{following.id}",
        type=RecommendationType.TIGHT,
        title="Tight transition",
        description=(
            f"Only {format_minutes(gap)} between {current.title} "
            f"(ends {format_clock(current.end, tz)}) and {following.title}."
        ),
        event_ids=[current.id, following.id],
        event_titles=[current.title, following.title],
        priority=Priority.LOW,
    )


def detect_gap_issues(
    events: Iterable[CalendarEvent],
    buffer_threshold_minutes: int = 15,
    max_gap_recommendations: int = 1,
    tz: Optional[tzinfo] = None,
) -> List[Recommendation]:
    """
    Scan adjacent events in time order.

    Back-to-back pairs and overlaps are reported first, in the order found.
    Short gaps under the threshold are informational and only reported when
    the scan found neither.
    """
    ordered = sort_events(events)
    severe: List[Recommendation] = []
    tight: List[Recommendation] = []

    for current, following in zip(ordered, ordered[1:]):
        gap = calculate_buffer(current, following)
        if gap == 0:
            severe.append(_buffer_recommendation(current, following, tz))
        elif gap < 0:
            overlap = min(-gap, current.duration_minutes, following.duration_minutes)
            severe.append(_conflict_recommendation(current, following, overlap, tz))
        elif gap < buffer_threshold_minutes:
            tight.append(_tight_recommendation(current, following, gap, tz))

    found = severe or tight
    return found[:max_gap_recommendations]


# ============================================
# URGENCY ISSUES
# ============================================

def detect_urgent_items(
    course_items: Iterable[CourseItem],
    now: datetime,
    high_priority_hours: int = 24,
    medium_priority_hours: int = 72,
    progress_threshold: int = 50,
    study_minutes: int = 120,
) -> List[Recommendation]:
    urgent = [
        item for item in course_items
        if is_urgent(item, now, high_priority_hours, medium_priority_hours, progress_threshold)
    ]
    # priority HIGH implies a due date
    urgent.sort(key=lambda item: (item.due_or_posted_at, item.id))

    recommendations = []
    for item in urgent:
        label = f"{item.title} ({item.course})" if item.course else item.title
        recommendations.append(Recommendation(
            id=f"urgency:{item.id}",
            type=RecommendationType.URGENCY,
            title=f"Urgent: {item.title}",
            description=(
                f"{label} is due in less than {high_priority_hours} hours and is only "
                f"{item.progress}% complete. Schedule {format_minutes(study_minutes)} to complete it."
            ),
            course_item_id=item.id,
            priority=Priority.HIGH,
        ))
    return recommendations


def detect_issues(
    events: Sequence[CalendarEvent],
    course_items: Sequence[CourseItem],
    now: datetime,
    buffer_threshold_minutes: int = 15,
    max_gap_recommendations: int = 1,
    high_priority_hours: int = 24,
    medium_priority_hours: int = 72,
    progress_threshold: int = 50,
    study_minutes: int = 120,
    tz: Optional[tzinfo] = None,
) -> List[Recommendation]:
    """All detector findings: gap issues first, then urgent course items."""
    return detect_gap_issues(
        events, buffer_threshold_minutes, max_gap_recommendations, tz
    ) + detect_urgent_items(
        course_items, now, high_priority_hours, medium_priority_hours,
        progress_threshold, study_minutes
    )

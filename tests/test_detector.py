import random
from datetime import timedelta

from conftest import NOW, TZ, at
from detector import calculate_buffer, detect_gap_issues, detect_issues, detect_urgent_items, format_minutes
from models import CalendarEvent, CompletionState, CourseItem, Priority, RecommendationType
from normalizer import normalize_course_items


def event(event_id, title, start, end):
    return CalendarEvent(id=event_id, title=title, start=start, end=end)


def assignment(progress, hours_until_due=20, **extra):
    return CourseItem(
        id=extra.pop("id", "a1"),
        title="DCF Model",
        course="Corporate Finance",
        due_or_posted_at=NOW + timedelta(hours=hours_until_due),
        progress=progress,
        **extra,
    )


class TestGapIssues:
    def test_back_to_back_events_get_one_buffer_recommendation(self):
        events = [
            event("b", "Gym", at(13), at(13, 45)),
            event("a", "Info Session", at(12), at(13)),
        ]
        found = detect_gap_issues(events, tz=TZ)

        assert len(found) == 1
        assert found[0].type == RecommendationType.BUFFER
        assert found[0].description == "Info Session ends at 13:00 and Gym starts immediately after."
        assert found[0].event_ids == ["a", "b"]

    def test_overlap_is_a_conflict(self):
        events = [
            event("a", "Strategy Class", at(10), at(11, 30)),
            event("b", "Coffee Chat", at(11), at(12)),
        ]
        found = detect_gap_issues(events, tz=TZ)

        assert found[0].type == RecommendationType.CONFLICT
        assert "by 30 minutes" in found[0].description

    def test_tight_gap_only_reported_without_severe_findings(self):
        tight_only = [
            event("a", "Class", at(9), at(10)),
            event("b", "Gym", at(10, 10), at(11)),
        ]
        assert detect_gap_issues(tight_only, tz=TZ)[0].type == RecommendationType.TIGHT

        with_buffer_issue = tight_only + [event("c", "Lunch", at(11), at(12))]
        found = detect_gap_issues(with_buffer_issue, tz=TZ)
        assert [r.type for r in found] == [RecommendationType.BUFFER]

    def test_comfortable_gaps_produce_nothing(self):
        events = [event("a", "Class", at(9), at(10)), event("b", "Gym", at(10, 30), at(11))]
        assert detect_gap_issues(events, tz=TZ) == []

    def test_recommendation_limit(self):
        events = [
            event("a", "One", at(9), at(10)),
            event("b", "Two", at(10), at(11)),
            event("c", "Three", at(11), at(12)),
        ]
        assert len(detect_gap_issues(events, tz=TZ)) == 1
        assert [r.id for r in detect_gap_issues(events, max_gap_recommendations=5, tz=TZ)] == [
            "buffer:a:b", "buffer:b:c"
        ]

    def test_calculate_buffer_floors_to_minutes(self):
        first = event("a", "One", at(9), at(10))
        second = event("b", "Two", at(10) + timedelta(seconds=90), at(11))
        assert calculate_buffer(first, second) == 1


class TestUrgency:
    def test_high_priority_low_progress_is_urgent(self):
        found = detect_urgent_items([assignment(30)], NOW)

        assert len(found) == 1
        assert found[0].type == RecommendationType.URGENCY
        assert found[0].priority == Priority.HIGH
        assert found[0].description == (
            "DCF Model (Corporate Finance) is due in less than 24 hours and is only 30% complete. "
            "Schedule 2 hours to complete it."
        )

    def test_progress_at_threshold_is_not_urgent(self):
        assert detect_urgent_items([assignment(60)], NOW) == []
        assert detect_urgent_items([assignment(50)], NOW) == []

    def test_medium_priority_is_not_urgent(self):
        item = assignment(0, hours_until_due=48)
        assert item.priority_at(NOW) == Priority.MEDIUM
        assert detect_urgent_items([item], NOW) == []

    def test_completed_items_are_skipped(self):
        item = assignment(0, completion_state=CompletionState.COMPLETED)
        assert detect_urgent_items([item], NOW) == []

    def test_overdue_work_is_not_urgent(self):
        raw = {
            "id": "memo",
            "kind": "assignment",
            "name": "Week 1 Memo",
            "course_name": "Strategy",
            "due_at": (NOW - timedelta(days=30)).isoformat(),
            "submission": {"workflow_state": "unsubmitted"},
        }
        items = normalize_course_items([raw], TZ)

        assert items[0].progress == 0
        assert detect_urgent_items(items, NOW) == []
        assert detect_urgent_items([assignment(0, hours_until_due=-1)], NOW) == []

    def test_sorted_by_due_date(self):
        items = [assignment(10, hours_until_due=20, id="later"), assignment(10, hours_until_due=3, id="sooner")]
        assert [r.course_item_id for r in detect_urgent_items(items, NOW)] == ["sooner", "later"]


def test_detect_issues_lists_gaps_before_urgency():
    events = [event("a", "Info Session", at(12), at(13)), event("b", "Gym", at(13), at(13, 45))]
    found = detect_issues(events, [assignment(30)], NOW, tz=TZ)

    assert [r.type for r in found] == [RecommendationType.BUFFER, RecommendationType.URGENCY]


def test_format_minutes():
    assert format_minutes(60) == "1 hour"
    assert format_minutes(120) == "2 hours"
    assert format_minutes(45) == "45 minutes"


def test_same_input_same_output():
    events = [
        event("a", "Info Session", at(12), at(13)),
        event("b", "Gym", at(13), at(13, 45)),
        event("c", "Strategy Class", at(15), at(16, 30)),
        event("d", "Coffee Chat", at(16), at(16, 30)),
    ]
    items = [assignment(10, hours_until_due=20, id="later"), assignment(10, hours_until_due=3, id="sooner")]
    expected = detect_issues(events, items, NOW, tz=TZ)

    shuffled_events, shuffled_items = events[:], items[:]
    random.Random(7).shuffle(shuffled_events)
    random.Random(7).shuffle(shuffled_items)

    assert detect_issues(shuffled_events, shuffled_items, NOW, tz=TZ) == expected
    assert detect_issues(events, items, NOW, tz=TZ) == expected

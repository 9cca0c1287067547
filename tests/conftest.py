"""
Shared fixtures: an in-process calendar, LMS, completion and embedding service
behind the same contracts the real clients implement.
"""

import re
import zlib
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

from clock import FixedClock
from config import ScheduleConfig
from database import InMemoryStore
from errors import ProviderConnectionError, ProviderError
from fetch_coordinator import FetchCoordinator
from models import EventSpec
from orchestrator import Orchestrator
from retrieval import RetrievalIndex

TZ = ZoneInfo("America/New_York")

# Wednesday
NOW = datetime(2026, 1, 21, 9, 0, tzinfo=TZ)


def at(hour: int, minute: int = 0, day: int = 21) -> datetime:
    return datetime(2026, 1, day, hour, minute, tzinfo=TZ)


def google_event(event_id: str, title: str, start: datetime, end: datetime, **extra) -> Dict[str, Any]:
    return {
        "id": event_id,
        "summary": title,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
        "status": "confirmed",
        **extra,
    }


class FakeCalendar:
    """Raw Google-shaped events held in a dict. ``fail`` maps an operation to the error it raises."""

    def __init__(self, events: Optional[List[Dict[str, Any]]] = None):
        self.events: Dict[str, Dict[str, Any]] = {e["id"]: e for e in events or []}
        self.fail: Dict[str, Exception] = {}
        self.list_calls = 0
        self._next_id = 1

    def _maybe_fail(self, operation: str):
        if operation in self.fail:
            raise self.fail[operation]

    async def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        self.list_calls += 1
        self._maybe_fail("list")
        found = []
        for raw in self.events.values():
            start = datetime.fromisoformat(raw["start"]["dateTime"])
            end = datetime.fromisoformat(raw["end"]["dateTime"])
            if start < time_max and end > time_min:
                found.append(dict(raw))
        return found

    async def create_event(self, spec: EventSpec) -> str:
        self._maybe_fail("create")
        event_id = f"new-{self._next_id}"
        self._next_id += 1
        self.events[event_id] = google_event(event_id, spec.title, spec.start, spec.end)
        return event_id

    async def update_event(self, event_id: str, spec: EventSpec) -> None:
        self._maybe_fail("update")
        if event_id not in self.events:
            raise ProviderError("Google Calendar", 404, "Not Found")
        self.events[event_id] = google_event(event_id, spec.title, spec.start, spec.end)

    async def delete_event(self, event_id: str) -> None:
        self._maybe_fail("delete")
        self.events.pop(event_id, None)

    def get(self, event_id: str) -> Dict[str, Any]:
        return self.events[event_id]


class FakeCourses:
    def __init__(self, items: Optional[List[Dict[str, Any]]] = None):
        self.items = items or []
        self.error: Optional[Exception] = None
        self.calls = 0

    async def list_course_items(self) -> List[Dict[str, Any]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [dict(item) for item in self.items]


class FakeCompletion:
    """Returns ``reply`` (or raises ``error``) and records every prompt it was given."""

    def __init__(self, reply: str = "Sounds good."):
        self.reply = reply
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system_prompt: str, history: List[Dict[str, str]], user_message: str) -> str:
        self.calls.append({"system_prompt": system_prompt, "history": history, "user_message": user_message})
        if self.error is not None:
            raise self.error
        return self.reply

    async def test_connection(self) -> Dict[str, object]:
        self.calls.append({"test": True})
        return {"success": self.error is None, "model": "fake"}


class FakeEmbedder:
    """Hashed bag-of-words vectors; texts sharing words score higher."""

    DIMENSIONS = 128

    def __init__(self):
        self.calls = 0
        self.error: Optional[Exception] = None

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        vector = [0.0] * self.DIMENSIONS
        for word in re.findall(r"[a-z]+", text.lower()):
            vector[zlib.crc32(word.encode("utf-8")) % self.DIMENSIONS] += 1.0
        return vector


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def schedule_config():
    return ScheduleConfig(timezone="America/New_York", fixed_today=None)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def calendar():
    return FakeCalendar([
        google_event("info", "Info Session", at(12), at(13)),
        google_event("gym", "Gym", at(13), at(13, 45)),
        google_event("class", "Finance Class", at(15), at(16, 30)),
    ])


@pytest.fixture
def courses():
    return FakeCourses([
        {
            "id": "a1",
            "kind": "assignment",
            "name": "DCF Model",
            "course_name": "Corporate Finance",
            "due_at": (NOW + timedelta(hours=20)).isoformat(),
            "progress": 30,
        },
        {
            "id": "a2",
            "kind": "assignment",
            "name": "Reading Reflection",
            "course_name": "Leadership",
            "due_at": (NOW + timedelta(days=5)).isoformat(),
            "progress": 0,
        },
    ])


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def retrieval(embedder, store):
    return RetrievalIndex(embedder, store)


@pytest.fixture
def fetcher(clock, store):
    return FetchCoordinator(clock, store, default_ttl=30)


@pytest.fixture
def orchestrator(calendar, courses, completion, retrieval, fetcher, clock, schedule_config, store):
    return Orchestrator(
        calendar=calendar,
        completion=completion,
        retrieval=retrieval,
        fetcher=fetcher,
        clock=clock,
        config=schedule_config,
        courses=courses,
        store=store,
    )


@pytest.fixture
def unreachable():
    return ProviderConnectionError("Google Calendar", "connection refused")

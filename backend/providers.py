"""
Nexus Scheduling Agent - Collaborator Contracts
The calendar, LMS, embedding and completion services the core talks to.
"""

from datetime import datetime
from typing import Any, Dict, List, Protocol

from models import EventSpec


class CalendarProvider(Protocol):
    async def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        ...

    async def create_event(self, spec: EventSpec) -> str:
        ...

    async def update_event(self, event_id: str, spec: EventSpec) -> None:
        ...

    async def delete_event(self, event_id: str) -> None:
        ...


class CourseProvider(Protocol):
    async def list_course_items(self) -> List[Dict[str, Any]]:
        """Raw LMS records, each tagged with ``kind``."""
        ...


class EmbeddingService(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class CompletionService(Protocol):
    async def complete(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_message: str,
    ) -> str:
        """``history`` holds ``{"role": "user"|"assistant", "content": ...}`` turns."""
        ...

    async def test_connection(self) -> Dict[str, object]:
        ...

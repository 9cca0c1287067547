"""
Nexus Scheduling Agent - Pydantic Models (v2 syntax)
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Literal, Union, Annotated
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from errors import IllegalTransition


def new_id() -> str:
    return uuid4().hex


# ============================================
# ENUMS
# ============================================

class EventCategory(str, Enum):
    CLASS = "class"
    MEETING = "meeting"
    STUDY = "study"
    WORKOUT = "workout"
    NETWORKING = "networking"
    RECRUITING = "recruiting"
    BUFFER = "buffer"


class EventStatus(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    UPCOMING = "upcoming"


class CourseItemKind(str, Enum):
    ASSIGNMENT = "assignment"
    QUIZ = "quiz"
    ANNOUNCEMENT = "announcement"


class CompletionState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionType(str, Enum):
    ADD = "add"
    MOVE = "move"
    CANCEL = "cancel"
    REPLACE = "replace"


class ActionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    APPLIED = "applied"
    REJECTED = "rejected"


class MessageType(str, Enum):
    USER = "user"
    AGENT = "agent"
    ACTION = "action"


class RecommendationType(str, Enum):
    BUFFER = "buffer"
    CONFLICT = "conflict"
    TIGHT = "tight"
    URGENCY = "urgency"


# Every status change an action may make. Anything else is an IllegalTransition.
ALLOWED_TRANSITIONS: Dict[ActionStatus, set] = {
    ActionStatus.PENDING: {ActionStatus.APPROVED, ActionStatus.REJECTED},
    ActionStatus.APPROVED: {ActionStatus.APPLIED, ActionStatus.PENDING},
    ActionStatus.APPLIED: set(),
    ActionStatus.REJECTED: set(),
}


# ============================================
# CALENDAR MODELS
# ============================================

class CalendarEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    start: datetime
    end: datetime
    category: EventCategory = EventCategory.MEETING
    location: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_interval(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("event timestamps must be timezone-aware")
        if self.end <= self.start:
            raise ValueError("event must end after it starts")
        return self

    @computed_field
    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def status_at(self, now: datetime) -> EventStatus:
        if now < self.start:
            return EventStatus.UPCOMING
        if now >= self.end:
            return EventStatus.COMPLETED
        return EventStatus.CURRENT


class EventSpec(BaseModel):
    """What the calendar provider is asked to create or update."""
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    location: Optional[str] = None


# ============================================
# COURSE MODELS
# ============================================

def compute_priority(
    due_at: Optional[datetime],
    now: datetime,
    high_hours: int = 24,
    medium_hours: int = 72,
) -> Priority:
    """High inside ``high_hours`` of the due date, medium inside ``medium_hours``, else low."""
    if due_at is None:
        return Priority.LOW
    hours_until_due = (due_at - now).total_seconds() / 3600
    if hours_until_due < high_hours:
        return Priority.HIGH
    if hours_until_due < medium_hours:
        return Priority.MEDIUM
    return Priority.LOW


class CourseItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    course: str = ""
    course_code: Optional[str] = None
    kind: CourseItemKind = CourseItemKind.ASSIGNMENT
    due_or_posted_at: Optional[datetime] = None
    completion_state: CompletionState = CompletionState.NOT_STARTED
    progress: int = Field(default=0, ge=0, le=100)
    html_url: Optional[str] = None
    points_possible: Optional[float] = None

    def priority_at(self, now: datetime, high_hours: int = 24, medium_hours: int = 72) -> Priority:
        # Announcements carry a posted date, not a deadline
        if self.kind == CourseItemKind.ANNOUNCEMENT:
            return Priority.LOW
        return compute_priority(self.due_or_posted_at, now, high_hours, medium_hours)


# ============================================
# ACTION MODELS
# ============================================

class EventSlot(BaseModel):
    """Title/time/duration of an event an action refers to or substitutes in."""
    title: str
    start: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    event_id: Optional[str] = None


class ScheduleActionBase(BaseModel):
    id: str = Field(default_factory=new_id)
    status: ActionStatus = ActionStatus.PENDING
    title: str
    start: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    original_user_text: Optional[str] = None
    target_event_id: Optional[str] = None
    created_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def end(self) -> Optional[datetime]:
        if self.start is None or self.duration_minutes is None:
            return None
        return self.start + timedelta(minutes=self.duration_minutes)

    def can_transition(self, new_status: ActionStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, new_status: ActionStatus) -> None:
        if not self.can_transition(new_status):
            raise IllegalTransition(self.id, self.status.value, new_status.value)
        self.status = new_status


class AddAction(ScheduleActionBase):
    type: Literal["add"] = "add"


class MoveAction(ScheduleActionBase):
    type: Literal["move"] = "move"


class CancelAction(ScheduleActionBase):
    type: Literal["cancel"] = "cancel"


class ReplaceAction(ScheduleActionBase):
    type: Literal["replace"] = "replace"
    replacement: EventSlot


ScheduleAction = Annotated[
    Union[AddAction, MoveAction, CancelAction, ReplaceAction],
    Field(discriminator="type"),
]


# ============================================
# CONVERSATION MODELS
# ============================================

class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    type: MessageType
    content: str
    timestamp: datetime
    action: Optional[ScheduleAction] = None

    @model_validator(mode="after")
    def check_action_owner(self):
        if (self.type == MessageType.ACTION) != (self.action is not None):
            raise ValueError("action messages own exactly one action; other messages own none")
        return self


class ConversationMemory(BaseModel):
    preferences: List[str] = Field(default_factory=list)
    recent_actions: List[str] = Field(default_factory=list)
    context: List[str] = Field(default_factory=list)

    def reset(self) -> None:
        self.preferences.clear()
        self.recent_actions.clear()
        self.context.clear()

    def is_empty(self) -> bool:
        return not (self.preferences or self.recent_actions or self.context)


# ============================================
# KNOWLEDGE MODELS
# ============================================

class KnowledgeChunk(BaseModel):
    id: str
    title: str
    chapter: str = ""
    content: str
    keywords: List[str] = Field(default_factory=list)
    embedding: Optional[List[float]] = None
    embedding_version: Optional[str] = None
    document_id: Optional[str] = None


class ContextHints(BaseModel):
    month: Optional[int] = Field(default=None, ge=1, le=12)
    priorities: List[str] = Field(default_factory=list)
    recent_activities: List[str] = Field(default_factory=list)


# ============================================
# DETECTOR / FETCH MODELS
# ============================================

class Recommendation(BaseModel):
    id: str
    type: RecommendationType
    title: str
    description: str
    event_ids: List[str] = Field(default_factory=list)
    event_titles: List[str] = Field(default_factory=list)
    course_item_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM


class FetchState(BaseModel):
    key: str
    last_fetch_at: Optional[datetime] = None
    cached_result_count: int = 0
    in_flight: bool = False
    connected: bool = False
    last_error: Optional[str] = None


# ============================================
# API MODELS
# ============================================

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    messages: List[Message]


class KnowledgeSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=20)
    month: Optional[int] = Field(default=None, ge=1, le=12)


class SettingUpdate(BaseModel):
    value: str

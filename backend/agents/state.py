"""
Nexus Scheduling Agent - Agent State Definitions
Shared state types for the LangGraph conversation agent
"""

from datetime import datetime
from typing import TypedDict, Optional, List, Dict

from intent_parser import ScheduleActionDraft
from models import (
    ActionType, CalendarEvent, CourseItem, KnowledgeChunk,
    Recommendation, ScheduleAction
)


class ConversationState(TypedDict, total=False):
    """
    State for one conversation turn.

    Flows parse_request -> gather_context -> retrieve_knowledge ->
    generate_reply -> classify_reply.
    """
    # Input
    user_text: str
    now: datetime
    history: List[Dict[str, str]]  # role/content turns before this one
    memory_text: str
    priorities: List[str]

    # Parsed request
    draft: ScheduleActionDraft

    # Context
    events: List[CalendarEvent]
    course_items: List[CourseItem]
    issues: List[Recommendation]
    context_warnings: List[str]
    chunks: List[KnowledgeChunk]

    # Reply
    system_prompt: str
    reply_text: str
    proposed_type: Optional[ActionType]
    action: Optional[ScheduleAction]

    # Error handling
    error: Optional[str]


def create_conversation_state(
    user_text: str,
    now: datetime,
    history: Optional[List[Dict[str, str]]] = None,
    memory_text: str = "",
    priorities: Optional[List[str]] = None,
) -> ConversationState:
    """Create the initial state for one turn."""
    return ConversationState(
        user_text=user_text,
        now=now,
        history=history or [],
        memory_text=memory_text,
        priorities=priorities or [],
        events=[],
        course_items=[],
        issues=[],
        context_warnings=[],
        chunks=[],
        reply_text="",
        proposed_type=None,
        action=None,
        error=None,
    )

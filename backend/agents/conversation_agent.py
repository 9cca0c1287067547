"""
Nexus Scheduling Agent - Conversation Agent
LangGraph-based agent for one conversation turn: read the request, gather
calendar and course context, ground it in the playbook, ask the completion
service and classify the reply into a proposed action or a plain message.
"""

import logging
import re
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, List, Literal, Optional

from langgraph.graph import StateGraph, END

from actions import build_action
from config import ScheduleConfig
from detector import detect_issues
from errors import ProviderConnectionError, ProviderError
from intent_parser import parse
from models import ActionType, CalendarEvent, ContextHints, CourseItem
from providers import CompletionService
from retrieval import RetrievalIndex, format_chunks_for_prompt

from .state import ConversationState, create_conversation_state

logger = logging.getLogger(__name__)

EventsLoader = Callable[[datetime, datetime], Awaitable[List[CalendarEvent]]]
CourseItemsLoader = Callable[[], Awaitable[List[CourseItem]]]


# ============================================
# REPLY CLASSIFICATION
# ============================================

# A verb only counts when it follows an offer in the same sentence
OFFER = r"\b(?:i can|i'll|i will|let me|i recommend|i suggest|i'd suggest)\b[^.?!\n]*?"

REPLY_PATTERNS = [
    (ActionType.MOVE, re.compile(OFFER + r"\b(?:move|moving|reschedule|rescheduling|shift|shifting)\b", re.I)),
    (ActionType.CANCEL, re.compile(OFFER + r"\b(?:cancel|cancelling|canceling|remove|removing|delete|deleting)\b", re.I)),
    (ActionType.ADD, re.compile(OFFER + r"\b(?:add|adding|schedule|scheduling|block|blocking|create|creating)\b", re.I)),
]


def classify_reply(reply: str) -> Optional[ActionType]:
    """Action type the reply proposes, or None for advice without a concrete change."""
    for action_type, pattern in REPLY_PATTERNS:
        if pattern.search(reply):
            return action_type
    return None


# ============================================
# PROMPT
# ============================================

SYSTEM_PROMPT = """You are Nexus, a scheduling chief of staff for a busy MBA student.
Be concise, direct and strategic. Ground advice in the playbook excerpts when they apply.
Never invent calendar events; if the calendar is unavailable, say so.
When you propose a calendar change, propose exactly one and phrase it as an offer that
names the event and the time, e.g. "I can move Gym to 14:00" or "I'll add Study Block at 16:00".
The user must approve every change before it is made."""


def _format_event(event: CalendarEvent, tz) -> str:
    start = event.start.astimezone(tz)
    end = event.end.astimezone(tz)
    return f"- {start:%a %d %b %H:%M}-{end:%H:%M} {event.title} ({event.category.value})"


def _format_item(item: CourseItem, now: datetime, config: ScheduleConfig) -> str:
    when = f"due {item.due_or_posted_at.astimezone(now.tzinfo):%a %d %b %H:%M}" if item.due_or_posted_at else "no date"
    priority = item.priority_at(now, config.high_priority_hours, config.medium_priority_hours)
    course = f" ({item.course})" if item.course else ""
    return f"- [{priority.value}] {item.title}{course}, {item.kind.value}, {when}, {item.progress}% complete"


def build_system_prompt(state: ConversationState, config: ScheduleConfig) -> str:
    now = state["now"]
    draft = state["draft"]
    sections = [SYSTEM_PROMPT, f"Current time: {now:%A %d %B %Y %H:%M} ({config.timezone})."]

    events = state.get("events", [])
    header = f"Calendar {draft.range_start:%a %d %b} to {draft.range_end:%a %d %b}:"
    if events:
        sections.append(header + "\n" + "\n".join(_format_event(e, now.tzinfo) for e in events))
    elif not state.get("context_warnings"):
        sections.append(header + "\nNo events.")

    items = state.get("course_items", [])
    if items:
        sections.append("Coursework:\n" + "\n".join(_format_item(i, now, config) for i in items[:15]))

    issues = state.get("issues", [])
    if issues:
        sections.append("Detected issues:\n" + "\n".join(f"- {r.description}" for r in issues))

    for warning in state.get("context_warnings", []):
        sections.append(f"Note: {warning}")

    if state.get("memory_text"):
        sections.append("What you know about the user:\n" + state["memory_text"])

    grounding = format_chunks_for_prompt(state.get("chunks", []))
    if grounding:
        sections.append("Playbook excerpts:\n\n" + grounding)

    return "\n\n".join(sections)


# ============================================
# AGENT
# ============================================

class ConversationAgent:
    """
    High-level interface for the conversation agent.

    Collaborators are passed in; graph nodes are bound methods so each turn
    sees the same calendar, course and retrieval services.
    """

    def __init__(
        self,
        completion: CompletionService,
        retrieval: RetrievalIndex,
        load_events: EventsLoader,
        load_course_items: CourseItemsLoader,
        config: ScheduleConfig,
        top_k: int = 3,
    ):
        self.completion = completion
        self.retrieval = retrieval
        self.load_events = load_events
        self.load_course_items = load_course_items
        self.config = config
        self.top_k = top_k
        self.agent = self.create_graph().compile()

    # ----- nodes -----

    async def parse_request(self, state: ConversationState) -> ConversationState:
        draft = parse(
            state["user_text"],
            state["now"],
            default_hour=self.config.default_hour,
            default_duration_minutes=self.config.default_duration_minutes,
        )
        return {**state, "draft": draft}

    async def gather_context(self, state: ConversationState) -> ConversationState:
        """Events for the parsed date range, course items and detector findings."""
        now = state["now"]
        draft = state["draft"]
        tz = now.tzinfo
        range_start = datetime.combine(draft.range_start, time(0, 0), tzinfo=tz)
        range_end = datetime.combine(draft.range_end + timedelta(days=1), time(0, 0), tzinfo=tz)
        warnings = list(state.get("context_warnings", []))

        events: List[CalendarEvent] = []
        try:
            events = await self.load_events(range_start, range_end)
        except (ProviderConnectionError, ProviderError) as e:
            logger.warning(f"Calendar context unavailable: {e}")
            warnings.append(f"The calendar could not be loaded ({e}). Do not guess its contents.")

        items: List[CourseItem] = []
        try:
            items = await self.load_course_items()
        except (ProviderConnectionError, ProviderError) as e:
            logger.warning(f"Course context unavailable: {e}")
            warnings.append(f"Coursework could not be loaded ({e}).")

        issues = detect_issues(
            events,
            items,
            now,
            buffer_threshold_minutes=self.config.buffer_threshold_minutes,
            max_gap_recommendations=self.config.max_gap_recommendations,
            high_priority_hours=self.config.high_priority_hours,
            medium_priority_hours=self.config.medium_priority_hours,
            progress_threshold=self.config.urgency_progress_threshold,
            study_minutes=self.config.urgency_study_minutes,
            tz=tz,
        )
        return {
            **state,
            "events": events,
            "course_items": items,
            "issues": issues,
            "context_warnings": warnings,
        }

    async def retrieve_knowledge(self, state: ConversationState) -> ConversationState:
        """Playbook chunks for the request; an empty list means no grounding."""
        activities = sorted({event.category.value for event in state.get("events", [])})
        hints = ContextHints(
            month=state["now"].month,
            priorities=state.get("priorities", []),
            recent_activities=activities,
        )
        chunks = await self.retrieval.search(state["user_text"], self.top_k, hints)
        return {**state, "chunks": chunks}

    async def generate_reply(self, state: ConversationState) -> ConversationState:
        system_prompt = build_system_prompt(state, self.config)
        try:
            reply = await self.completion.complete(
                system_prompt, state.get("history", []), state["user_text"]
            )
        except (ProviderConnectionError, ProviderError) as e:
            logger.error(f"Completion failed: {e}")
            return {**state, "system_prompt": system_prompt, "error": e.user_message()}
        return {**state, "system_prompt": system_prompt, "reply_text": reply}

    async def classify(self, state: ConversationState) -> ConversationState:
        """Turn the reply into a pending action when it proposes a concrete change."""
        proposed = classify_reply(state["reply_text"])
        draft = state["draft"]
        if proposed is not None and draft.action_type == ActionType.REPLACE:
            proposed = ActionType.REPLACE
        if proposed is None:
            return {**state, "proposed_type": None, "action": None}

        action = build_action(proposed, draft, state.get("events", []), state["now"])
        return {**state, "proposed_type": proposed, "action": action}

    # ----- routing -----

    def should_classify(self, state: ConversationState) -> Literal["classify_reply", "__end__"]:
        if state.get("error"):
            return END
        return "classify_reply"

    # ----- graph -----

    def create_graph(self) -> StateGraph:
        """
        Flow:
        1. parse_request - Slot extraction over the user text
        2. gather_context - Calendar, coursework and detected issues
        3. retrieve_knowledge - Playbook grounding
        4. generate_reply - Completion service
        5. classify_reply - Proposed action or plain message (skipped on error)
        """
        workflow = StateGraph(ConversationState)

        workflow.add_node("parse_request", self.parse_request)
        workflow.add_node("gather_context", self.gather_context)
        workflow.add_node("retrieve_knowledge", self.retrieve_knowledge)
        workflow.add_node("generate_reply", self.generate_reply)
        workflow.add_node("classify_reply", self.classify)

        workflow.set_entry_point("parse_request")
        workflow.add_edge("parse_request", "gather_context")
        workflow.add_edge("gather_context", "retrieve_knowledge")
        workflow.add_edge("retrieve_knowledge", "generate_reply")
        workflow.add_conditional_edges(
            "generate_reply",
            self.should_classify,
            {
                "classify_reply": "classify_reply",
                END: END
            }
        )
        workflow.add_edge("classify_reply", END)

        return workflow

    async def run(
        self,
        user_text: str,
        now: datetime,
        history: Optional[List[dict]] = None,
        memory_text: str = "",
        priorities: Optional[List[str]] = None,
    ) -> ConversationState:
        """Run one turn and return the final state."""
        initial_state = create_conversation_state(user_text, now, history, memory_text, priorities)
        return await self.agent.ainvoke(initial_state)

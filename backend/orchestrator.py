"""
Nexus Scheduling Agent - Recommendation/Action Orchestrator
Owns the conversation, the approval state machine and execution of approved
actions against the calendar.

Status changes happen synchronously (no await between the status check and
the transition), so a second approval of the same action always sees a
non-pending status and raises IllegalTransition.
"""

import logging
from datetime import datetime, time, timedelta, tzinfo
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from actions import find_event, find_free_slot, move_for_buffer, next_full_hour, study_block
from agents import ConversationAgent
from clock import Clock
from config import ScheduleConfig
from database import KeyValueStore
from detector import detect_issues, format_clock, format_minutes
from errors import (
    ActionExecutionFailure, MessageNotFound, NexusError, RecommendationNotFound
)
from fetch_coordinator import FetchCoordinator
from intent_parser import parse
from memory import (
    format_recall, is_recall_request, memory_prompt_block, record_approval,
    record_rejection, stated_priorities, update_from_user_text
)
from models import (
    ActionStatus, ActionType, CalendarEvent, ConversationMemory, CourseItem,
    EventSpec, Message, MessageType, Recommendation, RecommendationType, ScheduleAction
)
from normalizer import normalize_course_items, normalize_events, sort_course_items
from providers import CalendarProvider, CompletionService, CourseProvider
from retrieval import RetrievalIndex

logger = logging.getLogger(__name__)

CALENDAR_PREFIX = "calendar:"
COURSE_ITEMS_KEY = "canvas-items"

REJECT_REPLY = "Understood. Is there another way I can optimize your schedule?"
SNAPSHOT_DAYS = 31


def describe_slot(start: datetime, end: datetime, tz: tzinfo) -> str:
    start = start.astimezone(tz)
    end = end.astimezone(tz)
    return f"{start:%a %d %b} {start:%H:%M}-{end:%H:%M}"


class Orchestrator:
    """
    One user session: messages, memory and every collaborator the turn needs.

    Built once (FastAPI lifespan or a test fixture) and passed to whatever
    triggers it.
    """

    def __init__(
        self,
        calendar: CalendarProvider,
        completion: CompletionService,
        retrieval: RetrievalIndex,
        fetcher: FetchCoordinator,
        clock: Clock,
        config: ScheduleConfig,
        courses: Optional[CourseProvider] = None,
        store: Optional[KeyValueStore] = None,
        session_id: str = "default",
        top_k: int = 3,
    ):
        self.calendar = calendar
        self.completion = completion
        self.courses = courses
        self.retrieval = retrieval
        self.fetcher = fetcher
        self.clock = clock
        self.config = config
        self.store = store
        self.session_id = session_id
        self.tz = ZoneInfo(config.timezone)

        self.messages: List[Message] = []
        self.memory = ConversationMemory()
        self.agent = ConversationAgent(
            completion=completion,
            retrieval=retrieval,
            load_events=self.load_events,
            load_course_items=self.load_course_items,
            config=config,
            top_k=top_k,
        )

    def now(self) -> datetime:
        return self.clock.now().astimezone(self.tz)

    # ============================================
    # PROVIDER READS
    # ============================================

    async def load_events(self, time_min: datetime, time_max: datetime, force: bool = False) -> List[CalendarEvent]:
        """Normalized events in the window, through the fetch coordinator."""
        async def loader():
            raw = await self.calendar.list_events(time_min, time_max)
            return normalize_events(raw, self.tz)

        key = f"{CALENDAR_PREFIX}{time_min.isoformat()}/{time_max.isoformat()}"
        return await self.fetcher.fetch(key, loader, ttl=self.config.fetch_cache_ttl_seconds, force=force)

    async def load_course_items(self, force: bool = False) -> List[CourseItem]:
        if self.courses is None:
            return []

        async def loader():
            raw = await self.courses.list_course_items()
            return sort_course_items(normalize_course_items(raw, self.tz))

        return await self.fetcher.fetch(
            COURSE_ITEMS_KEY, loader, ttl=self.config.fetch_cache_ttl_seconds, force=force
        )

    def default_window(self) -> Tuple[datetime, datetime]:
        """Today plus the following six days."""
        start = datetime.combine(self.now().date(), time(0, 0), tzinfo=self.tz)
        return start, start + timedelta(days=7)

    # ============================================
    # CONVERSATION
    # ============================================

    def _append(self, message_type: MessageType, content: str, action: Optional[ScheduleAction] = None) -> Message:
        timestamp = self.now()
        if self.messages and timestamp <= self.messages[-1].timestamp:
            timestamp = self.messages[-1].timestamp + timedelta(microseconds=1)
        message = Message(type=message_type, content=content, timestamp=timestamp, action=action)
        self.messages.append(message)
        return message

    def history(self) -> List[dict]:
        """Completion-service turns. Resolved proposals carry their outcome; pending ones are left out."""
        turns = []
        for message in self.messages:
            if message.type == MessageType.USER:
                turns.append({"role": "user", "content": message.content})
                continue
            content = message.content
            if message.action is not None:
                if message.action.status == ActionStatus.PENDING:
                    continue
                if message.action.status in (ActionStatus.APPROVED, ActionStatus.APPLIED):
                    content += " (approved)"
                elif message.action.status == ActionStatus.REJECTED:
                    content += " (declined)"
            turns.append({"role": "assistant", "content": content})
        return turns

    async def send_message(self, text: str) -> List[Message]:
        """Handle one user message; returns the messages appended by this turn."""
        text = text.strip()
        if not text:
            return []

        history = self.history()
        user_message = self._append(MessageType.USER, text)

        if is_recall_request(text):
            reply = self._append(MessageType.AGENT, format_recall(self.memory))
            await self.save_session()
            return [user_message, reply]

        update_from_user_text(self.memory, text)
        state = await self.agent.run(
            text,
            self.now(),
            history=history,
            memory_text=memory_prompt_block(self.memory),
            priorities=stated_priorities(self.memory),
        )

        if state.get("error"):
            reply = self._append(MessageType.AGENT, state["error"])
        elif state.get("action") is not None:
            reply = self._append(MessageType.ACTION, state["reply_text"], state["action"])
            logger.info(f"Proposed {state['action'].type} action for '{state['action'].title}'")
        else:
            reply = self._append(MessageType.AGENT, state["reply_text"])

        await self.save_session()
        return [user_message, reply]

    def get_message(self, message_id: str) -> Message:
        for message in self.messages:
            if message.id == message_id:
                return message
        raise MessageNotFound(message_id)

    def _action_for(self, message_id: str) -> ScheduleAction:
        message = self.get_message(message_id)
        if message.action is None:
            raise MessageNotFound(message_id)
        return message.action

    # ============================================
    # APPROVAL STATE MACHINE
    # ============================================

    async def approve(self, message_id: str) -> List[Message]:
        """
        Execute a pending action.

        On success the action is applied and a confirmation is appended. On
        failure it returns to pending with ``last_error`` set and a failure
        message naming the next step.
        """
        action = self._action_for(message_id)
        action.transition_to(ActionStatus.APPROVED)

        try:
            confirmation = await self._execute(action)
        except Exception as e:
            if not isinstance(e, NexusError):
                logger.exception(f"Unexpected failure applying action {action.id}")
            failure = e if isinstance(e, ActionExecutionFailure) else ActionExecutionFailure(
                f'Could not apply "{action.title}": {e}'
            )
            action.transition_to(ActionStatus.PENDING)
            action.last_error = str(failure)
            logger.warning(f"Action {action.id} failed and is pending again: {failure}")
            reply = self._append(MessageType.AGENT, failure.user_message())
            await self.save_session()
            return [reply]

        action.transition_to(ActionStatus.APPLIED)
        action.last_error = None
        record_approval(self.memory, action.title)
        reply = self._append(MessageType.AGENT, confirmation)
        await self.save_session()
        return [reply]

    async def reject(self, message_id: str) -> List[Message]:
        action = self._action_for(message_id)
        action.transition_to(ActionStatus.REJECTED)
        record_rejection(self.memory, action.title)
        reply = self._append(MessageType.AGENT, REJECT_REPLY)
        await self.save_session()
        return [reply]

    # ============================================
    # EXECUTION
    # ============================================

    def _reparse(self, action: ScheduleAction, now: datetime):
        if not action.original_user_text:
            return None
        return parse(
            action.original_user_text,
            now,
            default_hour=self.config.default_hour,
            default_duration_minutes=self.config.default_duration_minutes,
        )

    def _snapshot_window(self, now: datetime, *moments: Optional[datetime]) -> Tuple[datetime, datetime]:
        days = [now.date()] + [m.astimezone(self.tz).date() for m in moments if m is not None]
        start = datetime.combine(min(days), time(0, 0), tzinfo=self.tz)
        end = datetime.combine(max(days) + timedelta(days=1), time(0, 0), tzinfo=self.tz)
        return start, max(end, start + timedelta(days=SNAPSHOT_DAYS))

    def _resolve_target(self, action: ScheduleAction, events: List[CalendarEvent], now: datetime) -> CalendarEvent:
        target = find_event(events, action.title, now=now, event_id=action.target_event_id)
        if target is None:
            raise ActionExecutionFailure(f'Could not find "{action.title}" on the calendar')
        return target

    def _overlaps(self, events: List[CalendarEvent], start: datetime, end: datetime, ignore_id: Optional[str]) -> List[str]:
        return [e.title for e in events if e.id != ignore_id and e.start < end and start < e.end]

    async def _execute(self, action: ScheduleAction) -> str:
        """Re-read the calendar, re-check conflicts and perform the mutation. Returns the confirmation."""
        now = self.now()
        draft = self._reparse(action, now)

        # Slots first; the original request fills whatever is missing
        start = action.start
        duration = action.duration_minutes
        if action.type == ActionType.REPLACE:
            start = action.replacement.start
            duration = action.replacement.duration_minutes
        if start is None and draft is not None and action.type in (ActionType.ADD, ActionType.MOVE):
            start = draft.start
        if duration is None and draft is not None and action.type == ActionType.ADD:
            duration = draft.duration_minutes

        window_start, window_end = self._snapshot_window(now, start, action.start)
        events = await self.load_events(window_start, window_end, force=True)

        if action.type == ActionType.ADD:
            if start is None or duration is None:
                raise ActionExecutionFailure(f'No time was given for "{action.title}"')
            end = start + timedelta(minutes=duration)
            clashes = self._overlaps(events, start, end, None)
            event_id = await self.calendar.create_event(EventSpec(title=action.title, start=start, end=end))
            action.target_event_id = event_id
            summary = f'Added "{action.title}" on {describe_slot(start, end, self.tz)}.'

        elif action.type == ActionType.CANCEL:
            target = self._resolve_target(action, events, now)
            await self.calendar.delete_event(target.id)
            clashes = []
            summary = f'Cancelled "{target.title}" ({describe_slot(target.start, target.end, self.tz)}).'

        elif action.type == ActionType.MOVE:
            target = self._resolve_target(action, events, now)
            if start is None:
                raise ActionExecutionFailure(f'No new time was given for "{target.title}"')
            end = start + timedelta(minutes=duration or target.duration_minutes)
            clashes = self._overlaps(events, start, end, target.id)
            await self.calendar.update_event(target.id, EventSpec(
                title=target.title, start=start, end=end,
                description=target.description, location=target.location,
            ))
            summary = f'Moved "{target.title}" to {describe_slot(start, end, self.tz)}.'

        else:
            target = self._resolve_target(action, events, now)
            start = start or target.start
            end = start + timedelta(minutes=duration or target.duration_minutes)
            clashes = self._overlaps(events, start, end, target.id)
            replacement = action.replacement.title
            await self.calendar.update_event(target.id, EventSpec(
                title=replacement, start=start, end=end, location=target.location,
            ))
            summary = f'Replaced "{target.title}" with "{replacement}" on {describe_slot(start, end, self.tz)}.'

        await self._reingest(window_start, window_end)
        if clashes:
            summary += f" Heads up: it overlaps {', '.join(clashes)}."
        return f"Calendar updated. {summary}"

    async def _reingest(self, window_start: datetime, window_end: datetime) -> None:
        """Drop cached calendar reads and reload the mutated window."""
        self.fetcher.invalidate_prefix(CALENDAR_PREFIX)
        try:
            await self.load_events(window_start, window_end, force=True)
        except NexusError as e:
            # The mutation already succeeded; the next read retries the load
            logger.warning(f"Calendar refresh after update failed: {e}")

    # ============================================
    # DETECTOR
    # ============================================

    async def scan(self, force: bool = False) -> List[Recommendation]:
        """Detector output over the current week and coursework."""
        window_start, window_end = self.default_window()
        events = await self.load_events(window_start, window_end, force=force)
        items = await self.load_course_items(force=force)
        return detect_issues(
            events,
            items,
            self.now(),
            buffer_threshold_minutes=self.config.buffer_threshold_minutes,
            max_gap_recommendations=self.config.max_gap_recommendations,
            high_priority_hours=self.config.high_priority_hours,
            medium_priority_hours=self.config.medium_priority_hours,
            progress_threshold=self.config.urgency_progress_threshold,
            study_minutes=self.config.urgency_study_minutes,
            tz=self.tz,
        )

    async def accept_recommendation(self, recommendation_id: str) -> Message:
        """Turn a detector finding into a pending action message."""
        recommendation = next(
            (r for r in await self.scan() if r.id == recommendation_id), None
        )
        if recommendation is None:
            raise RecommendationNotFound(recommendation_id)

        now = self.now()
        window_start, window_end = self.default_window()
        events = await self.load_events(window_start, window_end)

        if recommendation.type == RecommendationType.URGENCY:
            items = await self.load_course_items()
            item = next(i for i in items if i.id == recommendation.course_item_id)
            minutes = self.config.urgency_study_minutes
            start = find_free_slot(events, next_full_hour(now), minutes)
            action = study_block(f"Work on {item.title}", start, minutes, now)
            content = (
                f"{recommendation.description} I can block {format_minutes(minutes)} for it "
                f"on {describe_slot(start, action.end, self.tz)}."
            )
        else:
            by_id = {e.id: e for e in events}
            earlier, later = (by_id[event_id] for event_id in recommendation.event_ids)
            action = move_for_buffer(earlier, later, self.config.buffer_threshold_minutes, now)
            content = (
                f"{recommendation.description} I can move {later.title} to "
                f"{format_clock(action.start, self.tz)} to leave a "
                f"{self.config.buffer_threshold_minutes}-minute buffer after {earlier.title}."
            )

        message = self._append(MessageType.ACTION, content, action)
        await self.save_session()
        return message

    # ============================================
    # SESSION
    # ============================================

    @property
    def _messages_key(self) -> str:
        return f"session:{self.session_id}:messages"

    @property
    def _memory_key(self) -> str:
        return f"session:{self.session_id}:memory"

    async def save_session(self) -> None:
        if self.store is None:
            return
        try:
            await self.store.set(self._messages_key, [m.model_dump(mode="json") for m in self.messages])
            await self.store.set(self._memory_key, self.memory.model_dump(mode="json"))
        except Exception as e:
            # In-process state stays authoritative for this session
            logger.warning(f"Could not persist session {self.session_id}: {e}")

    async def load_session(self) -> None:
        if self.store is None:
            return
        messages = await self.store.get(self._messages_key) or []
        memory = await self.store.get(self._memory_key)
        self.messages = [Message.model_validate(m) for m in messages]
        self.memory = ConversationMemory.model_validate(memory) if memory else ConversationMemory()
        logger.info(f"Restored session {self.session_id} ({len(self.messages)} messages)")

    async def reset(self) -> None:
        """Clear messages and memory for this session."""
        self.messages.clear()
        self.memory.reset()
        if self.store is not None:
            await self.store.delete(self._messages_key)
            await self.store.delete(self._memory_key)

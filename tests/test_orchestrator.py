from datetime import datetime

import pytest

from conftest import TZ, at, google_event
from errors import IllegalTransition, MessageNotFound, ProviderConnectionError, ProviderError, RecommendationNotFound
from models import ActionStatus, ActionType, MessageType
from orchestrator import REJECT_REPLY, Orchestrator


def event_start(calendar, event_id):
    return datetime.fromisoformat(calendar.get(event_id)["start"]["dateTime"])


async def propose(orchestrator, completion, text, reply):
    completion.reply = reply
    user, proposal = await orchestrator.send_message(text)
    assert user.type == MessageType.USER
    return proposal


class TestConversation:
    @pytest.mark.asyncio
    async def test_offer_becomes_pending_action(self, orchestrator, completion):
        proposal = await propose(
            orchestrator, completion,
            "Schedule time for valuation case study today at 2pm for 2 hours",
            "I'll add Valuation Case Study at 14:00 for 2 hours.",
        )

        assert proposal.type == MessageType.ACTION
        action = proposal.action
        assert action.type == ActionType.ADD.value
        assert action.status == ActionStatus.PENDING
        assert action.title == "Valuation Case Study"
        assert action.start == at(14)
        assert action.duration_minutes == 120

    @pytest.mark.asyncio
    async def test_advice_without_offer_is_a_plain_message(self, orchestrator, completion):
        completion.reply = "Coffee chats work best early in the week."
        _, reply = await orchestrator.send_message("When should I do coffee chats?")

        assert reply.type == MessageType.AGENT
        assert reply.action is None

    @pytest.mark.asyncio
    async def test_prompt_carries_calendar_issues_and_playbook(self, orchestrator, completion):
        await orchestrator.send_message("How does my day look?")

        prompt = completion.calls[0]["system_prompt"]
        assert "Info Session" in prompt
        assert "Info Session ends at 13:00 and Gym starts immediately after." in prompt
        assert "DCF Model" in prompt
        assert "Playbook excerpts:" in prompt

    @pytest.mark.asyncio
    async def test_unreachable_calendar_is_noted_not_invented(self, orchestrator, calendar, completion, unreachable):
        calendar.fail["list"] = unreachable

        _, reply = await orchestrator.send_message("How does my day look?")

        assert reply.type == MessageType.AGENT
        prompt = completion.calls[0]["system_prompt"]
        assert "could not be loaded" in prompt
        assert "Info Session" not in prompt

    @pytest.mark.asyncio
    async def test_completion_failure_becomes_error_message(self, orchestrator, completion):
        completion.error = ProviderConnectionError("AI service", "timed out")

        _, reply = await orchestrator.send_message("Move gym to 3pm tomorrow")

        assert reply.type == MessageType.AGENT
        assert reply.action is None
        assert "Could not reach AI service" in reply.content

    @pytest.mark.asyncio
    async def test_message_timestamps_strictly_increase(self, orchestrator):
        await orchestrator.send_message("Hello")
        await orchestrator.send_message("Anything today?")

        stamps = [m.timestamp for m in orchestrator.messages]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    @pytest.mark.asyncio
    async def test_empty_message_is_ignored(self, orchestrator, completion):
        assert await orchestrator.send_message("   ") == []
        assert completion.calls == []


class TestApproval:
    @pytest.mark.asyncio
    async def test_approved_add_creates_event_and_notes_overlap(self, orchestrator, calendar, completion):
        proposal = await propose(
            orchestrator, completion,
            "Schedule time for valuation case study today at 2pm for 2 hours",
            "I'll add Valuation Case Study at 14:00.",
        )

        [reply] = await orchestrator.approve(proposal.id)

        assert proposal.action.status == ActionStatus.APPLIED
        created = calendar.get(proposal.action.target_event_id)
        assert created["summary"] == "Valuation Case Study"
        assert reply.content.startswith("Calendar updated.")
        assert "overlaps Finance Class" in reply.content
        assert orchestrator.memory.recent_actions == ["Approved: Valuation Case Study"]

    @pytest.mark.asyncio
    async def test_approved_move_updates_the_event(self, orchestrator, calendar, completion):
        proposal = await propose(
            orchestrator, completion, "Move gym to 3pm tomorrow", "I can move Gym to 15:00 tomorrow."
        )

        await orchestrator.approve(proposal.id)

        assert proposal.action.status == ActionStatus.APPLIED
        assert event_start(calendar, "gym") == datetime(2026, 1, 22, 15, 0, tzinfo=TZ)

    @pytest.mark.asyncio
    async def test_failed_write_returns_action_to_pending(self, orchestrator, calendar, completion):
        proposal = await propose(
            orchestrator, completion, "Move gym to 3pm tomorrow", "I can move Gym to 15:00 tomorrow."
        )
        calendar.fail["update"] = ProviderError("Google Calendar", 503, "Backend Error")

        [reply] = await orchestrator.approve(proposal.id)

        action = proposal.action
        assert action.status == ActionStatus.PENDING
        assert "Backend Error" in action.last_error
        assert reply.type == MessageType.AGENT
        assert "Approve again to retry" in reply.content
        assert orchestrator.messages[-1] is reply
        assert event_start(calendar, "gym") == at(13)

        # The same action can be approved again once the provider recovers
        del calendar.fail["update"]
        await orchestrator.approve(proposal.id)
        assert action.status == ActionStatus.APPLIED
        assert action.last_error is None

    @pytest.mark.asyncio
    async def test_missing_target_fails_without_mutation(self, orchestrator, calendar, completion):
        proposal = await propose(
            orchestrator, completion, "Cancel yoga tomorrow", "I can cancel Yoga for you."
        )
        before = dict(calendar.events)

        await orchestrator.approve(proposal.id)

        assert proposal.action.status == ActionStatus.PENDING
        assert calendar.events == before

    @pytest.mark.asyncio
    async def test_cancel_deletes_the_event(self, orchestrator, calendar, completion):
        proposal = await propose(
            orchestrator, completion, "Cancel the info session", "I can cancel the Info Session."
        )

        await orchestrator.approve(proposal.id)

        assert "info" not in calendar.events

    @pytest.mark.asyncio
    async def test_replace_updates_in_place(self, orchestrator, calendar, completion):
        proposal = await propose(
            orchestrator, completion,
            "Replace gym with study session",
            "I can schedule a Study Session instead of Gym.",
        )
        assert proposal.action.type == ActionType.REPLACE.value

        await orchestrator.approve(proposal.id)

        assert calendar.get("gym")["summary"] == "Study Session"
        assert event_start(calendar, "gym") == at(13)
        assert calendar.get("gym")["end"]["dateTime"] == at(13, 45).isoformat()

    @pytest.mark.asyncio
    async def test_replace_found_only_at_approval_keeps_its_slot(self, orchestrator, calendar, completion):
        proposal = await propose(
            orchestrator, completion,
            "Replace yoga with study session",
            "I can schedule a Study Session instead of Yoga.",
        )
        assert proposal.action.target_event_id is None
        assert proposal.action.replacement.start is None

        calendar.events["yoga"] = google_event("yoga", "Yoga", at(17), at(18))
        await orchestrator.approve(proposal.id)

        assert calendar.get("yoga")["summary"] == "Study Session"
        assert event_start(calendar, "yoga") == at(17)
        assert calendar.get("yoga")["end"]["dateTime"] == at(18).isoformat()

    @pytest.mark.asyncio
    async def test_reject(self, orchestrator, completion):
        proposal = await propose(
            orchestrator, completion, "Move gym to 3pm tomorrow", "I can move Gym to 15:00 tomorrow."
        )

        [reply] = await orchestrator.reject(proposal.id)

        assert proposal.action.status == ActionStatus.REJECTED
        assert reply.content == REJECT_REPLY
        assert orchestrator.memory.recent_actions == ["Declined: Gym"]
        assert orchestrator.history()[1]["content"].endswith("(declined)")

    @pytest.mark.asyncio
    async def test_pending_proposals_stay_out_of_history(self, orchestrator, completion):
        proposal = await propose(
            orchestrator, completion, "Move gym to 3pm tomorrow", "I can move Gym to 15:00 tomorrow."
        )
        completion.reply = "Sure."
        await orchestrator.send_message("Anything else today?")

        sent = completion.calls[-1]["history"]
        assert sent == [{"role": "user", "content": "Move gym to 3pm tomorrow"}]

        await orchestrator.approve(proposal.id)
        assert orchestrator.history()[1] == {
            "role": "assistant", "content": "I can move Gym to 15:00 tomorrow. (approved)"
        }

    @pytest.mark.asyncio
    async def test_resolved_actions_cannot_change_again(self, orchestrator, completion):
        proposal = await propose(
            orchestrator, completion, "Move gym to 3pm tomorrow", "I can move Gym to 15:00 tomorrow."
        )
        await orchestrator.approve(proposal.id)

        with pytest.raises(IllegalTransition):
            await orchestrator.approve(proposal.id)
        with pytest.raises(IllegalTransition):
            await orchestrator.reject(proposal.id)

    @pytest.mark.asyncio
    async def test_unknown_or_plain_messages_have_no_action(self, orchestrator):
        user, _ = await orchestrator.send_message("Hello")

        with pytest.raises(MessageNotFound):
            await orchestrator.approve("missing")
        with pytest.raises(MessageNotFound):
            await orchestrator.approve(user.id)


class TestRecommendations:
    @pytest.mark.asyncio
    async def test_scan(self, orchestrator):
        found = await orchestrator.scan()

        assert [r.id for r in found] == ["buffer:info:gym", "urgency:a1"]

    @pytest.mark.asyncio
    async def test_accept_buffer_recommendation(self, orchestrator, calendar):
        message = await orchestrator.accept_recommendation("buffer:info:gym")

        assert message.type == MessageType.ACTION
        assert message.action.start == at(13, 15)
        assert "15-minute buffer after Info Session" in message.content

        await orchestrator.approve(message.id)
        assert event_start(calendar, "gym") == at(13, 15)

    @pytest.mark.asyncio
    async def test_accept_urgency_recommendation(self, orchestrator):
        message = await orchestrator.accept_recommendation("urgency:a1")

        action = message.action
        assert action.type == ActionType.ADD.value
        assert action.title == "Work on DCF Model"
        assert action.start == at(9)
        assert action.duration_minutes == 120

    @pytest.mark.asyncio
    async def test_unknown_recommendation(self, orchestrator):
        with pytest.raises(RecommendationNotFound):
            await orchestrator.accept_recommendation("buffer:nope:nope")


class TestMemoryAndSession:
    @pytest.mark.asyncio
    async def test_recall_is_answered_from_memory(self, orchestrator, completion):
        await orchestrator.send_message("My priority this month is recruiting")
        calls = len(completion.calls)

        _, reply = await orchestrator.send_message("What do you remember about me?")

        assert len(completion.calls) == calls
        assert "Prioritizes recruiting and career development" in reply.content

    @pytest.mark.asyncio
    async def test_stated_priority_reaches_the_prompt(self, orchestrator, completion):
        await orchestrator.send_message("I need to focus on recruiting")

        assert "Prioritizes recruiting and career development" in completion.calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_session_survives_restart(self, orchestrator, completion, calendar, retrieval, fetcher, clock, schedule_config, store):
        proposal = await propose(
            orchestrator, completion, "Move gym to 3pm tomorrow", "I can move Gym to 15:00 tomorrow."
        )

        restored = Orchestrator(
            calendar=calendar, completion=completion, retrieval=retrieval, fetcher=fetcher,
            clock=clock, config=schedule_config, store=store,
        )
        await restored.load_session()

        assert [m.id for m in restored.messages] == [m.id for m in orchestrator.messages]
        assert restored.get_message(proposal.id).action.status == ActionStatus.PENDING

    @pytest.mark.asyncio
    async def test_reset(self, orchestrator, store):
        await orchestrator.send_message("I prefer morning workouts")

        await orchestrator.reset()

        assert orchestrator.messages == []
        assert orchestrator.memory.is_empty()
        assert await store.get("session:default:messages") is None

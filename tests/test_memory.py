from memory import (
    detect_stated_priority, format_recall, is_recall_request, memory_prompt_block,
    record_approval, record_rejection, stated_priorities, update_from_user_text
)
from models import ConversationMemory


def test_stated_priority_needs_a_trigger():
    assert detect_stated_priority("My top priority is recruiting") == "recruiting and career development"
    assert detect_stated_priority("I need to study for the exam") == "academics and studying"
    assert detect_stated_priority("recruiting events tonight") is None


def test_preferences_and_priorities_are_recorded():
    memory = ConversationMemory()

    update_from_user_text(memory, "I prefer workouts before class")
    update_from_user_text(memory, "Health is important to me this week")

    assert memory.preferences == [
        "User mentioned: I prefer workouts before class",
        "Prioritizes health and recovery",
    ]
    assert stated_priorities(memory) == ["health and recovery"]


def test_resolved_actions_are_recorded():
    memory = ConversationMemory()
    record_approval(memory, "Gym")
    record_rejection(memory, "Coffee Chat")

    assert memory.recent_actions == ["Approved: Gym", "Declined: Coffee Chat"]


def test_recall_requests():
    assert is_recall_request("What do you remember about me?")
    assert is_recall_request("what did you know about me")
    assert not is_recall_request("Remind me to call Sam")


def test_recall_shows_last_three_actions():
    memory = ConversationMemory()
    for title in ["One", "Two", "Three", "Four"]:
        record_approval(memory, title)

    text = format_recall(memory)

    assert "Approved: One" not in text
    assert "Approved: Four" in text
    assert "Preferences:\n- (nothing yet)" in text


def test_empty_memory():
    memory = ConversationMemory()
    assert "don't have anything saved" in format_recall(memory)
    assert memory_prompt_block(memory) == ""


def test_reset():
    memory = ConversationMemory()
    update_from_user_text(memory, "I like early mornings")
    memory.reset()
    assert memory.is_empty()

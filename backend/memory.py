"""
Nexus Scheduling Agent - Conversation Memory
Heuristic capture of preferences, priorities and resolved actions.
"""

import re
from typing import List, Optional

from models import ConversationMemory

PRIORITY_TRIGGERS = ("priority", "priorities", "focus on", "important", "need to")

# Ordered; the first group with a matching keyword names the priority.
PRIORITY_GROUPS = [
    ("recruiting and career development", ("recruit", "career", "job")),
    ("academics and studying", ("study", "academic", "exam", "class")),
    ("health and recovery", ("health", "recovery", "rest", "well-being")),
    ("networking and building connections", ("network", "connection", "relationship")),
]

PRIORITY_PREFIX = "Priority set: "

RECALL_PATTERN = re.compile(
    r"\bwhat (?:do|did) you (?:remember|know about me)\b|\brecall\b|\bmemory\b", re.I
)
PREFERENCE_PATTERN = re.compile(r"\b(prefer|like)\b", re.I)


def detect_stated_priority(text: str) -> Optional[str]:
    lowered = text.lower()
    if not any(trigger in lowered for trigger in PRIORITY_TRIGGERS):
        return None
    for priority, keywords in PRIORITY_GROUPS:
        if any(keyword in lowered for keyword in keywords):
            return priority
    return None


def is_recall_request(text: str) -> bool:
    return RECALL_PATTERN.search(text) is not None


def update_from_user_text(memory: ConversationMemory, text: str) -> None:
    """Append whatever the message reveals. Entries are never removed here."""
    if PREFERENCE_PATTERN.search(text):
        memory.preferences.append(f"User mentioned: {text}")
    priority = detect_stated_priority(text)
    if priority:
        memory.context.append(f"{PRIORITY_PREFIX}{priority}")
        memory.preferences.append(f"Prioritizes {priority}")


def record_approval(memory: ConversationMemory, title: str) -> None:
    memory.recent_actions.append(f"Approved: {title}")


def record_rejection(memory: ConversationMemory, title: str) -> None:
    memory.recent_actions.append(f"Declined: {title}")


def stated_priorities(memory: ConversationMemory) -> List[str]:
    return [
        entry[len(PRIORITY_PREFIX):]
        for entry in memory.context
        if entry.startswith(PRIORITY_PREFIX)
    ]


def _bullets(entries: List[str]) -> str:
    return "\n".join(f"- {entry}" for entry in entries) if entries else "- (nothing yet)"


def format_recall(memory: ConversationMemory) -> str:
    """Answer to "what do you remember", built from memory alone."""
    if memory.is_empty():
        return (
            "I don't have anything saved about you yet. Tell me your priorities or "
            "preferences and I'll keep them in mind."
        )
    return (
        "Here's what I remember about you:\n\n"
        f"Preferences:\n{_bullets(memory.preferences)}\n\n"
        f"Recent actions:\n{_bullets(memory.recent_actions[-3:])}\n\n"
        f"Current context:\n{_bullets(memory.context)}"
    )


def memory_prompt_block(memory: ConversationMemory) -> str:
    if memory.is_empty():
        return ""
    sections = []
    if memory.preferences:
        sections.append("User preferences:\n" + _bullets(memory.preferences))
    if memory.recent_actions:
        sections.append("Recent actions:\n" + _bullets(memory.recent_actions[-5:]))
    if memory.context:
        sections.append("Context:\n" + _bullets(memory.context))
    return "\n\n".join(sections)

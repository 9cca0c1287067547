"""
Nexus Scheduling Agent - Agent Package
LangGraph-based conversation agent
"""

from .state import (
    ConversationState,
    create_conversation_state,
)

from .conversation_agent import (
    ConversationAgent,
    classify_reply,
    build_system_prompt,
)

__all__ = [
    "ConversationState",
    "create_conversation_state",
    "ConversationAgent",
    "classify_reply",
    "build_system_prompt",
]

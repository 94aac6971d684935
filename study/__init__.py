"""Study workflow: state machine, topic assignment, and the chat orchestrator."""

from study.orchestrator import ChatOrchestrator
from study.state_machine import ConversationStateMachine, DisplayMode
from study.topics import assign_topic_config

__all__ = [
    "ChatOrchestrator",
    "ConversationStateMachine",
    "DisplayMode",
    "assign_topic_config",
]

"""Conversation turn pipeline — routing, prompt composition, streaming, side effects."""

from conversation.commands import ChatMode, Route, RouteKind, extract_commands, route
from conversation.context_builder import build_system_prompt, compose_history
from conversation.engine import AnthropicStreamer, TurnExecutor, TurnOutcome, TurnResult
from conversation.side_effects import AutoTitler, FollowUpSuggester, SideEffectScheduler

__all__ = [
    "AnthropicStreamer",
    "AutoTitler",
    "ChatMode",
    "FollowUpSuggester",
    "Route",
    "RouteKind",
    "SideEffectScheduler",
    "TurnExecutor",
    "TurnOutcome",
    "TurnResult",
    "build_system_prompt",
    "compose_history",
    "extract_commands",
    "route",
]

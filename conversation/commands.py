"""CommandRouter — decides what a user turn should do.

A leading /command overrides the active chat mode. Without one, the chat
mode picks the path. Routing never raises; anything it cannot make sense of
becomes "persist the history unchanged".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from core.models import Message, Role

logger = logging.getLogger(__name__)

CMD_RUN_IMAGINE = ("/imagine", "/img")
CMD_RUN_REACT = ("/react",)
CMD_ADD_ROLE_MESSAGE = ("/system", "/s", "/assistant", "/a", "/user", "/u")

ALL_COMMANDS = CMD_RUN_IMAGINE + CMD_RUN_REACT + CMD_ADD_ROLE_MESSAGE

# longest first so "/system" wins over "/s"
_COMMAND_PATTERN = re.compile(
    r"^(" + "|".join(re.escape(c) for c in sorted(ALL_COMMANDS, key=len, reverse=True)) + r")\s+(.*)$",
    re.DOTALL,
)


class ChatMode(str, Enum):
    IMMEDIATE = "immediate"
    IMMEDIATE_FOLLOW_UP = "immediate-follow-up"
    WRITE_USER = "write-user"
    REACT = "react"
    DRAW_IMAGINE = "draw-imagine"
    DRAW_IMAGINE_PLUS = "draw-imagine-plus"

    @classmethod
    def parse(cls, value: object) -> ChatMode | None:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


class RouteKind(str, Enum):
    ASSISTANT = "assistant"      # stream an assistant turn
    TANGENT = "tangent"          # /react tangent agent
    IMAGE = "image"              # image generation
    ROLE_OVERRIDE = "role"       # persist with the last message's role remapped
    PERSIST = "persist"          # persist history, call nothing


@dataclass
class CommandPiece:
    type: str  # "cmd" | "text"
    value: str


@dataclass
class Route:
    kind: RouteKind
    history: list[Message]
    prompt: str = ""
    command: str | None = None
    follow_ups: bool = False
    auto_title: bool = False
    notes: list[str] = field(default_factory=list)


def extract_commands(text: str) -> list[CommandPiece]:
    """Split an optional leading command from the free text after it."""
    match = _COMMAND_PATTERN.match(text.strip())
    if match is None:
        return [CommandPiece("text", text)]
    return [CommandPiece("cmd", match.group(1)), CommandPiece("text", match.group(2).strip())]


def role_for_command(command: str) -> Role:
    if command.startswith("/s"):
        return Role.SYSTEM
    if command.startswith("/a"):
        return Role.ASSISTANT
    return Role.USER


def route(history: list[Message], chat_mode: ChatMode | str | None) -> Route:
    """Classify the last turn of `history` under `chat_mode`.

    The returned route carries its own copy of the history; when the route
    rewrites the last message (role override, imagine prefix) only the copy
    changes.
    """
    history = list(history)
    last = history[-1] if history else None

    if last is not None and last.role == Role.USER:
        pieces = extract_commands(last.text)
        if len(pieces) == 2 and pieces[0].type == "cmd" and pieces[1].type == "text" and pieces[1].value:
            command, prompt = pieces[0].value, pieces[1].value
            if command in CMD_RUN_IMAGINE:
                return Route(RouteKind.IMAGE, history, prompt=prompt, command=command)
            if command in CMD_RUN_REACT:
                return Route(RouteKind.TANGENT, history, prompt=prompt, command=command)
            if command in CMD_ADD_ROLE_MESSAGE:
                role = role_for_command(command)
                history[-1] = last.model_copy(update={"role": role, "sender": "Bot", "text": prompt})
                return Route(RouteKind.ROLE_OVERRIDE, history, prompt=prompt, command=command)

    mode = ChatMode.parse(chat_mode)
    if mode in (ChatMode.IMMEDIATE, ChatMode.IMMEDIATE_FOLLOW_UP):
        return Route(
            RouteKind.ASSISTANT,
            history,
            follow_ups=mode == ChatMode.IMMEDIATE_FOLLOW_UP,
            auto_title=True,
        )
    if mode == ChatMode.WRITE_USER:
        return Route(RouteKind.PERSIST, history)
    if mode == ChatMode.REACT and last is not None and last.text:
        return Route(RouteKind.TANGENT, history, prompt=last.text)
    if mode == ChatMode.DRAW_IMAGINE and last is not None and last.text:
        history[-1] = last.model_copy(update={"text": f"{CMD_RUN_IMAGINE[0]} {last.text}"})
        return Route(RouteKind.IMAGE, history, prompt=last.text)

    logger.info("No route for mode %r, persisting history unchanged", chat_mode)
    return Route(RouteKind.PERSIST, history, notes=[f"unrouted mode: {chat_mode}"])

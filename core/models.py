"""Conversation data model — messages, conversations, persuasion configuration."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from core.cancellation import CancellationToken


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Phase(str, Enum):
    """Dialogue is the persuasive discussion, memo the neutral writing help."""

    DIALOGUE = "dialogue"
    MEMO = "memo"


class Standpoint(str, Enum):
    SUPPORTING = "supporting"
    OPPOSING = "opposing"
    UNSET = "unset"

    @classmethod
    def parse(cls, value: object) -> Standpoint:
        """Resolve a raw value; anything unknown becomes UNSET."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNSET


class Strategy(str, Enum):
    SUGGESTION = "suggestion"
    CLARIFICATION = "clarification"
    UNSET = "unset"

    @classmethod
    def parse(cls, value: object) -> Strategy:
        """Resolve a raw value; anything unknown becomes UNSET."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.UNSET


class RetrievedSnippet(BaseModel):
    """A grounding snippet returned by the retrieval index."""

    content: str
    score: float = 0.0
    source: str = ""


class Message(BaseModel):
    """A single chat message. The id is stable for the life of the message."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Role
    text: str = ""
    sender: str = "You"
    typing: bool = False
    origin_llm: Optional[str] = None
    purpose_id: Optional[str] = None
    retrieved_context: Optional[list[RetrievedSnippet]] = None
    follow_ups: list[str] = Field(default_factory=list)
    created: datetime = Field(default_factory=_now)
    updated: Optional[datetime] = None


def create_message(role: Role | str, text: str) -> Message:
    """Build a fresh message; assistant and system messages are sent by the Bot."""
    role = Role(role)
    return Message(role=role, text=text, sender="You" if role == Role.USER else "Bot")


class PersuasionConfig(BaseModel):
    """Topic, standpoint and strategy bound once per conversation."""

    topic: Optional[str] = None
    standpoint: Standpoint = Standpoint.UNSET
    strategy: Strategy = Strategy.UNSET

    @field_validator("standpoint", mode="before")
    @classmethod
    def _resolve_standpoint(cls, value: object) -> Standpoint:
        return Standpoint.parse(value)

    @field_validator("strategy", mode="before")
    @classmethod
    def _resolve_strategy(cls, value: object) -> Strategy:
        return Strategy.parse(value)

    @field_validator("topic", mode="before")
    @classmethod
    def _blank_topic(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_bound(self) -> bool:
        return (
            self.topic is not None
            or self.standpoint != Standpoint.UNSET
            or self.strategy != Strategy.UNSET
        )


class Conversation(BaseModel):
    """A conversation in either the dialogue or the memo phase."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    phase: Phase = Phase.DIALOGUE
    messages: list[Message] = Field(default_factory=list)
    topic: Optional[str] = None
    standpoint: Standpoint = Standpoint.UNSET
    strategy: Strategy = Strategy.UNSET
    initial_system_message: Optional[str] = None
    paired_memo_id: Optional[str] = None
    paired_dialogue_id: Optional[str] = None
    study_id: Optional[str] = None
    auto_title: Optional[str] = None
    user_title: Optional[str] = None
    created: datetime = Field(default_factory=_now)
    updated: Optional[datetime] = None

    @field_validator("standpoint", mode="before")
    @classmethod
    def _resolve_standpoint(cls, value: object) -> Standpoint:
        return Standpoint.parse(value)

    @field_validator("strategy", mode="before")
    @classmethod
    def _resolve_strategy(cls, value: object) -> Strategy:
        return Strategy.parse(value)

    @property
    def config(self) -> PersuasionConfig:
        return PersuasionConfig(
            topic=self.topic, standpoint=self.standpoint, strategy=self.strategy,
        )

    @property
    def title(self) -> str:
        return self.user_title or self.auto_title or ""

    def has_user_messages(self) -> bool:
        return any(m.role == Role.USER for m in self.messages)

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


class TurnRequest(BaseModel):
    """Ephemeral description of one assistant turn."""

    model_config = {"arbitrary_types_allowed": True}

    conversation_id: str
    history: list[Message]
    llm_id: str
    cancellation_token: Optional[CancellationToken] = None


def last_user_text(history: list[Message]) -> str:
    """Text of the most recent non-empty user message, or ""."""
    for message in reversed(history):
        if message.role == Role.USER and message.text.strip():
            return message.text
    return ""

"""ConversationStateMachine — phase authority, config binding, memo pairing.

A conversation's phase and its persuasion config are settled before the
first user message and never change afterwards. A dialogue can have exactly
one memo paired with it; when a pairing exists the UI shows both side by side.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from conversation.prompts import (
    DIALOGUE_GREETING,
    DIALOGUE_GREETING_NO_TOPIC,
    MEMO_GREETING,
    MEMO_GREETING_NO_TOPIC,
)
from core.errors import ConfigurationLocked
from core.models import Conversation, PersuasionConfig, Phase

if TYPE_CHECKING:
    from store.conversations import ConversationStore

logger = logging.getLogger(__name__)


class DisplayMode(str, Enum):
    SINGLE = "single"
    SPLIT = "split"


class ConversationStateMachine:
    """Governs phase, configuration binding, and dialogue/memo pairing."""

    def __init__(self, store: ConversationStore):
        self.store = store

    # --- Phase ---

    def phase(self, conversation_id: str) -> Phase:
        return self.store.require(conversation_id).phase

    def set_phase(self, conversation_id: str, phase: Phase) -> None:
        """Change phase; only allowed while the conversation has no user message."""
        conversation = self.store.require(conversation_id)
        phase = Phase(phase)
        if conversation.phase == phase:
            return
        if conversation.has_user_messages():
            raise ConfigurationLocked(
                f"Conversation {conversation_id} already started in phase {conversation.phase.value}"
            )
        if conversation.paired_memo_id or conversation.paired_dialogue_id:
            raise ConfigurationLocked(f"Conversation {conversation_id} is paired; phase is fixed")
        self.store.edit_conversation(conversation_id, phase=phase)
        logger.info("Conversation %s phase -> %s", conversation_id, phase.value)

    # --- Configuration binding ---

    def can_bind(self, conversation_id: str) -> bool:
        conversation = self.store.require(conversation_id)
        return not conversation.config.is_bound and not conversation.has_user_messages()

    def bind_config(self, conversation_id: str, config: PersuasionConfig) -> PersuasionConfig:
        """Bind topic/standpoint/strategy once. Any later attempt is refused."""
        conversation = self.store.require(conversation_id)
        if conversation.config.is_bound:
            raise ConfigurationLocked(f"Conversation {conversation_id} already has a persuasion config")
        if conversation.has_user_messages():
            raise ConfigurationLocked(
                f"Conversation {conversation_id} has started; config must be bound before the first message"
            )
        self.store.edit_conversation(
            conversation_id,
            topic=config.topic,
            standpoint=config.standpoint,
            strategy=config.strategy,
        )
        logger.info(
            "Config bound for %s: topic=%r standpoint=%s strategy=%s",
            conversation_id, config.topic, config.standpoint.value, config.strategy.value,
        )
        return self.store.require(conversation_id).config

    def should_select_topic(self, conversation_id: str, study_id: str | None) -> bool:
        """Topic picker is due: study id known, nothing said yet, no topic chosen."""
        if not study_id:
            return False
        conversation = self.store.get(conversation_id)
        if conversation is None:
            return False
        return not conversation.has_user_messages() and not conversation.topic

    # --- Pairing ---

    def pair(self, dialogue_id: str, memo_id: str) -> None:
        """Record a one-to-one dialogue/memo pairing."""
        dialogue = self.store.require(dialogue_id)
        memo = self.store.require(memo_id)
        if dialogue.phase != Phase.DIALOGUE or memo.phase != Phase.MEMO:
            raise ValueError("Pairing needs one dialogue and one memo conversation")
        if dialogue.paired_memo_id not in (None, memo_id):
            raise ValueError(f"Dialogue {dialogue_id} already paired with memo {dialogue.paired_memo_id}")
        if memo.paired_dialogue_id not in (None, dialogue_id):
            raise ValueError(f"Memo {memo_id} already paired with dialogue {memo.paired_dialogue_id}")
        self.store.edit_conversation(dialogue_id, paired_memo_id=memo_id)
        self.store.edit_conversation(memo_id, paired_dialogue_id=dialogue_id)
        logger.info("Paired dialogue %s with memo %s", dialogue_id, memo_id)

    def spawn_memo(self, dialogue_id: str) -> Conversation:
        """Create (or return) the memo conversation paired with a dialogue."""
        dialogue = self.store.require(dialogue_id)
        if dialogue.paired_memo_id:
            existing = self.store.get(dialogue.paired_memo_id)
            if existing is not None:
                return existing
        memo = self.store.create_conversation(phase=Phase.MEMO, study_id=dialogue.study_id)
        if dialogue.topic:
            self.store.edit_conversation(memo.id, topic=dialogue.topic)
        self.pair(dialogue_id, memo.id)
        return memo

    def paired_conversation_id(self, conversation_id: str) -> str | None:
        conversation = self.store.get(conversation_id)
        if conversation is None:
            return None
        return conversation.paired_memo_id or conversation.paired_dialogue_id

    def display_mode(self, conversation_id: str) -> DisplayMode:
        paired_id = self.paired_conversation_id(conversation_id)
        if paired_id and self.store.get(paired_id) is not None:
            return DisplayMode.SPLIT
        return DisplayMode.SINGLE

    # --- Greeting ---

    def initial_greeting(self, conversation_id: str) -> str:
        conversation = self.store.require(conversation_id)
        if conversation.phase == Phase.MEMO:
            if conversation.topic:
                return MEMO_GREETING.format(topic=conversation.topic)
            return MEMO_GREETING_NO_TOPIC
        if conversation.topic:
            return DIALOGUE_GREETING.format(topic=conversation.topic)
        return DIALOGUE_GREETING_NO_TOPIC

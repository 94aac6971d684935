"""ContextBuilder — composes the system prompt for every turn.

The prompt is a pure function of the conversation's phase, topic, standpoint
and strategy plus the current date. compose_history() works on a copy of the
caller's history, drops whatever system message was there, and puts the
freshly composed one at index 0.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from conversation.prompts import (
    CONCEALMENT_CLAUSE,
    DATE_PLACEHOLDER,
    FALLBACK_SYSTEM_PROMPT,
    MEMO_ASSISTANT_PROMPT,
    PERSUASIVE_ASSISTANT_PROMPT,
    PURPOSE_FALLBACK,
    PURPOSE_MEMO_WRITER,
    PURPOSE_PERSUADER,
    STANDPOINT_INSTRUCTIONS,
    STRATEGY_INSTRUCTIONS,
    TOPIC_LINE,
)
from core.models import Message, Phase, Role, Standpoint, Strategy, create_message

if TYPE_CHECKING:
    from store.conversations import ConversationStore

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n"


def today_iso() -> str:
    return date.today().isoformat()


def build_system_prompt(
    phase: Phase,
    topic: str | None = None,
    standpoint: Standpoint = Standpoint.UNSET,
    strategy: Strategy = Strategy.UNSET,
    today: str | None = None,
) -> str:
    """Build the system prompt text for one turn.

    Dialogue: base instructions, topic line, standpoint, strategy, concealment
    clause (only when a standpoint or strategy is set). Memo: topic line and
    the writing-assistant template; standpoint and strategy are never injected.
    Unknown standpoint/strategy values resolve to UNSET and their section is
    left out.
    """
    standpoint = Standpoint.parse(standpoint)
    strategy = Strategy.parse(strategy)
    topic_line = TOPIC_LINE.format(topic=topic.strip()) if topic and topic.strip() else None

    sections: list[str] = []
    if Phase(phase) == Phase.MEMO:
        if topic_line:
            sections.append(topic_line)
        sections.append(MEMO_ASSISTANT_PROMPT)
    else:
        sections.append(PERSUASIVE_ASSISTANT_PROMPT)
        if topic_line:
            sections.append(topic_line)
        standpoint_text = STANDPOINT_INSTRUCTIONS.get(standpoint)
        if standpoint_text:
            sections.append(standpoint_text)
        strategy_text = STRATEGY_INSTRUCTIONS.get(strategy)
        if strategy_text:
            sections.append(strategy_text)
        if standpoint != Standpoint.UNSET or strategy != Strategy.UNSET:
            sections.append(CONCEALMENT_CLAUSE)

    return replace_date(SECTION_SEPARATOR.join(sections), today)


def replace_date(text: str, today: str | None = None) -> str:
    return text.replace(DATE_PLACEHOLDER, today or today_iso())


def purpose_for(phase: Phase) -> str:
    return PURPOSE_MEMO_WRITER if Phase(phase) == Phase.MEMO else PURPOSE_PERSUADER


def compose_history(
    store: ConversationStore,
    conversation_id: str,
    history: list[Message],
    today: str | None = None,
) -> list[Message]:
    """Return a new history with the composed system message at index 0.

    The caller's list and its messages are left untouched. The first time a
    standpoint or strategy is bound, the composed text is also snapshotted as
    the conversation's initial system message.
    """
    enhanced = [m for m in history if m.role != Role.SYSTEM]
    previous_system = next((m for m in history if m.role == Role.SYSTEM), None)

    conversation = store.get(conversation_id)
    if conversation is None:
        logger.warning("Composing for unknown conversation %s, using fallback prompt", conversation_id)
        text = replace_date(FALLBACK_SYSTEM_PROMPT, today)
        purpose_id = PURPOSE_FALLBACK
    else:
        text = build_system_prompt(
            conversation.phase,
            topic=conversation.topic,
            standpoint=conversation.standpoint,
            strategy=conversation.strategy,
            today=today,
        )
        purpose_id = purpose_for(conversation.phase)
        config_bound = (
            conversation.standpoint != Standpoint.UNSET
            or conversation.strategy != Strategy.UNSET
        )
        if config_bound and conversation.initial_system_message is None:
            store.set_initial_system_message(conversation_id, text)

    system_message = create_message(Role.SYSTEM, text)
    if previous_system is not None:
        # keep the id stable across turns, discard the old content
        system_message.id = previous_system.id
    system_message.purpose_id = purpose_id

    logger.debug(
        "Composed system prompt for %s: %d chars, purpose=%s",
        conversation_id, len(text), purpose_id,
    )
    return [system_message, *enhanced]

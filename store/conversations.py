"""ConversationStore — the shared, in-process conversation store.

All writers go through id-keyed mutators (append, patch-by-id, replace list)
so that stream handlers and side-effect tasks interleaving on the event loop
never overwrite each other's updates. Reads observe writes immediately; the
SQLite snapshot (save/load_all) is a durability layer on top.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from core.cancellation import CancellationToken, InFlightRegistry, InFlightTurn
from core.models import (
    Conversation,
    Message,
    Phase,
    RetrievedSnippet,
    Role,
    Standpoint,
    Strategy,
)
from store.database import get_db, init_database

logger = logging.getLogger(__name__)

# Fields a patch may touch; id and role are fixed for the life of a message
PATCHABLE_MESSAGE_FIELDS = frozenset({
    "text", "sender", "typing", "origin_llm", "purpose_id", "retrieved_context", "follow_ups",
})

EDITABLE_CONVERSATION_FIELDS = frozenset({
    "phase", "topic", "standpoint", "strategy", "paired_memo_id", "paired_dialogue_id",
    "study_id", "auto_title", "user_title",
})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore:
    """Conversations addressable by id, plus the per-conversation in-flight slot."""

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path
        self.conversations: dict[str, Conversation] = {}
        self.in_flight = InFlightRegistry()

    # --- Conversations ---

    def create_conversation(
        self,
        phase: Phase = Phase.DIALOGUE,
        study_id: str | None = None,
        conversation_id: str | None = None,
    ) -> Conversation:
        kwargs: dict[str, Any] = {"phase": phase, "study_id": study_id}
        if conversation_id:
            kwargs["id"] = conversation_id
        conversation = Conversation(**kwargs)
        self.conversations[conversation.id] = conversation
        logger.debug("Conversation created: %s [%s]", conversation.id, phase.value)
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    def require(self, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise ValueError(f"Conversation {conversation_id} not found")
        return conversation

    def edit_conversation(self, conversation_id: str, **fields: Any) -> Conversation:
        """Set conversation-level fields (no message list changes)."""
        conversation = self.require(conversation_id)
        unknown = set(fields) - EDITABLE_CONVERSATION_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit conversation fields: {sorted(unknown)}")
        for name, value in fields.items():
            if name == "standpoint":
                value = Standpoint.parse(value)
            elif name == "strategy":
                value = Strategy.parse(value)
            elif name == "phase":
                value = Phase(value)
            setattr(conversation, name, value)
        conversation.updated = _now()
        return conversation

    def set_initial_system_message(self, conversation_id: str, text: str) -> bool:
        """Snapshot the first composed prompt. Never overwrites an existing snapshot."""
        conversation = self.require(conversation_id)
        if conversation.initial_system_message is not None:
            return False
        conversation.initial_system_message = text
        conversation.updated = _now()
        logger.info("Initial system message snapshotted for %s (%d chars)", conversation_id, len(text))
        return True

    def set_auto_title(self, conversation_id: str, title: str) -> None:
        conversation = self.require(conversation_id)
        conversation.auto_title = title or None
        conversation.updated = _now()

    def delete_conversation(self, conversation_id: str) -> None:
        self.in_flight.abort(conversation_id)
        self.conversations.pop(conversation_id, None)

    # --- Messages ---

    def append_message(self, conversation_id: str, message: Message) -> Message:
        conversation = self.require(conversation_id)
        conversation.messages.append(message)
        conversation.updated = _now()
        return message

    def patch_message(self, conversation_id: str, message_id: str, **fields: Any) -> bool:
        """Apply a partial update to one message, addressed by its stable id.

        Returns False if the message no longer exists (e.g. the list was replaced).
        """
        conversation = self.require(conversation_id)
        unknown = set(fields) - PATCHABLE_MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"Cannot patch message fields: {sorted(unknown)}")
        message = conversation.find_message(message_id)
        if message is None:
            logger.debug("Patch dropped, message %s not in %s", message_id, conversation_id)
            return False
        if "retrieved_context" in fields and fields["retrieved_context"] is not None:
            fields["retrieved_context"] = [
                s if isinstance(s, RetrievedSnippet) else RetrievedSnippet.model_validate(s)
                for s in fields["retrieved_context"]
            ]
        for name, value in fields.items():
            setattr(message, name, value)
        message.updated = _now()
        return True

    def set_messages(self, conversation_id: str, messages: list[Message]) -> None:
        """Replace the whole message list (history sync, clear, role override)."""
        conversation = self.require(conversation_id)
        conversation.messages = list(messages)
        conversation.updated = _now()

    def typing_messages(self, conversation_id: str) -> list[Message]:
        conversation = self.require(conversation_id)
        return [m for m in conversation.messages if m.typing]

    # --- In-flight slot ---

    def start_typing(self, conversation_id: str, token: CancellationToken, message_id: str) -> None:
        """Bind `token` as the conversation's only in-flight turn.

        A previous turn is cancelled and its placeholder stops typing in the same
        synchronous step, so at most one message per conversation is typing.
        """
        self.require(conversation_id)
        previous = self.in_flight.replace(conversation_id, InFlightTurn(token, message_id))
        if previous is not None and previous.message_id != message_id:
            self.patch_message(conversation_id, previous.message_id, typing=False)

    def stop_typing(self, conversation_id: str, token: CancellationToken) -> bool:
        return self.in_flight.release(conversation_id, token)

    def is_typing(self, conversation_id: str) -> bool:
        return self.in_flight.get(conversation_id) is not None

    def abort(self, conversation_id: str) -> bool:
        """Stop button: cancel the in-flight turn, if any."""
        return self.in_flight.abort(conversation_id)

    # --- Persistence ---

    async def init(self) -> None:
        if self.db_path:
            await init_database(self.db_path)

    async def save(self, conversation_id: str) -> None:
        """Write one conversation and its messages to SQLite."""
        if not self.db_path:
            return
        conversation = self.require(conversation_id)
        async with get_db(self.db_path) as db:
            await db.execute(
                """INSERT OR REPLACE INTO conversations
                   (conversation_id, phase, topic, standpoint, strategy,
                    initial_system_message, paired_memo_id, paired_dialogue_id,
                    study_id, auto_title, user_title, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    conversation.id,
                    conversation.phase.value,
                    conversation.topic,
                    conversation.standpoint.value,
                    conversation.strategy.value,
                    conversation.initial_system_message,
                    conversation.paired_memo_id,
                    conversation.paired_dialogue_id,
                    conversation.study_id,
                    conversation.auto_title,
                    conversation.user_title,
                    conversation.created.isoformat(),
                    conversation.updated.isoformat() if conversation.updated else None,
                ),
            )
            await db.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation.id,))
            for position, message in enumerate(conversation.messages):
                await db.execute(
                    """INSERT INTO messages
                       (message_id, conversation_id, position, role, text, sender,
                        origin_llm, purpose_id, retrieved_context, follow_ups,
                        created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        message.id,
                        conversation.id,
                        position,
                        message.role.value,
                        message.text,
                        message.sender,
                        message.origin_llm,
                        message.purpose_id,
                        json.dumps([s.model_dump() for s in message.retrieved_context])
                        if message.retrieved_context is not None else None,
                        json.dumps(message.follow_ups),
                        message.created.isoformat(),
                        message.updated.isoformat() if message.updated else None,
                    ),
                )
            await db.commit()
        logger.debug("Conversation saved: %s (%d messages)", conversation.id, len(conversation.messages))

    async def save_all(self) -> None:
        for conversation_id in list(self.conversations):
            await self.save(conversation_id)

    async def load_all(self) -> int:
        """Restore every saved conversation. Returns how many were loaded."""
        if not self.db_path:
            return 0
        async with get_db(self.db_path) as db:
            cursor = await db.execute("SELECT * FROM conversations ORDER BY created_at")
            rows = await cursor.fetchall()
            for row in rows:
                conversation = self._row_to_conversation(row)
                msg_cursor = await db.execute(
                    "SELECT * FROM messages WHERE conversation_id = ? ORDER BY position",
                    (conversation.id,),
                )
                conversation.messages = [self._row_to_message(r) for r in await msg_cursor.fetchall()]
                self.conversations[conversation.id] = conversation
        logger.info("Loaded %d conversations from %s", len(rows), self.db_path)
        return len(rows)

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["conversation_id"],
            phase=Phase(row["phase"]),
            topic=row["topic"],
            standpoint=row["standpoint"],
            strategy=row["strategy"],
            initial_system_message=row["initial_system_message"],
            paired_memo_id=row["paired_memo_id"],
            paired_dialogue_id=row["paired_dialogue_id"],
            study_id=row["study_id"],
            auto_title=row["auto_title"],
            user_title=row["user_title"],
            created=datetime.fromisoformat(row["created_at"]),
            updated=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        retrieved = json.loads(row["retrieved_context"]) if row["retrieved_context"] else None
        return Message(
            id=row["message_id"],
            role=Role(row["role"]),
            text=row["text"],
            sender=row["sender"] or "You",
            typing=False,
            origin_llm=row["origin_llm"],
            purpose_id=row["purpose_id"],
            retrieved_context=retrieved,
            follow_ups=json.loads(row["follow_ups"]) if row["follow_ups"] else [],
            created=datetime.fromisoformat(row["created_at"]),
            updated=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

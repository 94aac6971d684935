"""Cooperative cancellation for in-flight assistant turns."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag checked by the stream before each patch."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancelled (used by callers that race a slow read)."""
        await self._event.wait()


@dataclass
class InFlightTurn:
    """What occupies a conversation's single in-flight slot."""

    token: CancellationToken
    message_id: str


class InFlightRegistry:
    """Maps conversation id -> the one in-flight turn for it.

    replace() is the atomic store-and-cancel-previous operation: there is no
    await between reading the old handle, cancelling it and storing the new one.
    """

    def __init__(self) -> None:
        self._slots: dict[str, InFlightTurn] = {}

    def replace(self, conversation_id: str, turn: InFlightTurn) -> InFlightTurn | None:
        previous = self._slots.get(conversation_id)
        if previous is not None and previous.token is not turn.token:
            previous.token.cancel("superseded")
            logger.info(
                "Turn for message %s superseded in conversation %s",
                previous.message_id, conversation_id,
            )
        self._slots[conversation_id] = turn
        return previous

    def release(self, conversation_id: str, token: CancellationToken) -> bool:
        """Clear the slot only if `token` still owns it."""
        current = self._slots.get(conversation_id)
        if current is not None and current.token is token:
            del self._slots[conversation_id]
            return True
        return False

    def get(self, conversation_id: str) -> InFlightTurn | None:
        return self._slots.get(conversation_id)

    def abort(self, conversation_id: str) -> bool:
        """External stop: cancel whatever is in flight for the conversation."""
        current = self._slots.get(conversation_id)
        if current is None:
            return False
        current.token.cancel("aborted")
        return True

from __future__ import annotations

import asyncio

from core.models import Message, Role, create_message
from store.conversations import ConversationStore

TODAY = "2024-03-01"


def user_turn(store: ConversationStore, conversation_id: str, text: str) -> list[Message]:
    """Append a user message and return the resulting history."""
    store.append_message(conversation_id, create_message(Role.USER, text))
    return list(store.require(conversation_id).messages)


async def wait_for(predicate, attempts: int = 200) -> None:
    """Yield to the event loop until `predicate()` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")

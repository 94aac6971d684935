"""TurnExecutor — runs one streaming assistant turn against the shared store.

Sequence per turn:
1. Append a typing placeholder for the assistant (before any network call)
2. Bind a fresh cancellation token, superseding any turn already in flight
3. Compose the history with this turn's system prompt
4. Optionally ground the system prompt with retrieved snippets
5. Stream the reply, patching the placeholder by id, checking the token first
6. Clear typing however the stream ends, then run post-turn side effects
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

import anthropic
from pydantic import BaseModel

from config.settings import Settings
from conversation.context_builder import compose_history
from conversation.speech import find_speech_cut
from core.cancellation import CancellationToken
from core.errors import TransportError, TurnCancelled
from core.models import Message, Role, Standpoint, TurnRequest, create_message, last_user_text
from core.token_tracker import TokenTracker

if TYPE_CHECKING:
    from conversation.side_effects import SideEffectScheduler
    from conversation.speech import Speaker
    from retrieval.retriever import ContextRetriever
    from store.conversations import ConversationStore

logger = logging.getLogger(__name__)

PartialHandler = Callable[[dict[str, Any]], None]


class ChatStreamer(Protocol):
    async def stream(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        token: CancellationToken,
        on_partial: PartialHandler,
    ) -> None: ...


class TurnOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TurnResult(BaseModel):
    conversation_id: str
    message_id: str
    outcome: TurnOutcome
    augmented: bool = False
    error: Optional[str] = None


class AnthropicStreamer:
    """Streams a Claude reply, delivering the accumulated text after every delta."""

    def __init__(self, settings: Settings | None = None, client: anthropic.AsyncAnthropic | None = None):
        self.settings = settings or Settings()
        self.client = client or anthropic.AsyncAnthropic(api_key=self.settings.ANTHROPIC_API_KEY)

    async def stream(
        self,
        model_id: str,
        messages: list[dict[str, str]],
        token: CancellationToken,
        on_partial: PartialHandler,
    ) -> None:
        system_parts = [m["content"] for m in messages if m["role"] == "system" and m["content"]]
        chat = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m["role"] in ("user", "assistant") and m["content"].strip()
        ]
        kwargs: dict[str, Any] = {
            "model": model_id,
            "max_tokens": self.settings.MAX_RESPONSE_TOKENS,
            "messages": chat,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        logger.debug(
            "Claude stream: %d messages, system prompt %d chars",
            len(chat), len(kwargs.get("system", "")),
        )
        text = ""
        try:
            async with self.client.messages.stream(**kwargs) as stream:
                deltas = stream.text_stream
                while True:
                    delta = await _next_or_cancel(deltas, token)
                    if delta is None:
                        break
                    text += delta
                    on_partial({"text": text})
                final = await stream.get_final_message()
                TokenTracker().record(final.usage, model=model_id)
        except anthropic.APIError as e:
            raise TransportError(f"Claude stream failed: {e}") from e
        logger.debug("Claude stream finished: %d chars", len(text))


async def _next_or_cancel(deltas, token: CancellationToken) -> str | None:
    """Next text delta, or None at the end of the stream.

    The read is raced against the token, so an abort settles the turn even
    while the connection is stalled between deltas.
    """
    if token.cancelled:
        raise TurnCancelled(token.reason)
    read = asyncio.ensure_future(anext(deltas, None))
    cancelled = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        read.cancel()
        raise
    finally:
        cancelled.cancel()
    if not read.done():
        read.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await read
        raise TurnCancelled(token.reason)
    delta = read.result()
    if token.cancelled:
        raise TurnCancelled(token.reason)
    return delta


def create_assistant_typing_message(
    store: ConversationStore,
    conversation_id: str,
    llm_label: str,
    purpose_id: str | None = None,
    text: str = "",
) -> str:
    """Append a blank, typing assistant message and return its id."""
    message = create_message(Role.ASSISTANT, text)
    message.typing = True
    message.purpose_id = purpose_id
    message.origin_llm = llm_label
    store.append_message(conversation_id, message)
    return message.id


class TurnExecutor:
    """Runs assistant turns; acts only through side effects on the store."""

    def __init__(
        self,
        store: ConversationStore,
        streamer: ChatStreamer,
        settings: Settings | None = None,
        retriever: ContextRetriever | None = None,
        speaker: Speaker | None = None,
        scheduler: SideEffectScheduler | None = None,
        today_fn: Callable[[], str] | None = None,
    ):
        self.store = store
        self.streamer = streamer
        self.settings = settings or Settings()
        self.retriever = retriever
        self.speaker = speaker
        self.scheduler = scheduler
        self._today_fn = today_fn or (lambda: date.today().isoformat())

    async def execute_turn(
        self,
        conversation_id: str,
        history: list[Message],
        llm_id: str,
        auto_title: bool = False,
        follow_ups: bool = False,
    ) -> TurnResult:
        """Run one turn. Settles when the stream terminates; never raises for
        transport failures or cancellation.
        """
        # 1. placeholder, so the UI shows activity before any network call
        message_id = create_assistant_typing_message(self.store, conversation_id, llm_id)

        # 2. take the in-flight slot in the same synchronous step
        token = CancellationToken()
        self.store.start_typing(conversation_id, token, message_id)
        request = TurnRequest(
            conversation_id=conversation_id,
            history=list(history),
            llm_id=llm_id,
            cancellation_token=token,
        )
        logger.info("Turn started in %s (message %s, model %s)", conversation_id, message_id, llm_id)

        outcome = TurnOutcome.COMPLETED
        augmented = False
        error: str | None = None
        try:
            # 3. composed history with this turn's system prompt
            composed = compose_history(self.store, conversation_id, request.history, today=self._today_fn())
            if composed[0].purpose_id:
                self.store.patch_message(conversation_id, message_id, purpose_id=composed[0].purpose_id)

            # 4. retrieval augmentation, best effort
            composed, augmented = await self._augment(request, composed, message_id)
            if token.cancelled:
                raise TurnCancelled(token.reason)

            # 5. stream
            await self.streamer.stream(
                llm_id,
                [{"role": m.role.value, "content": m.text} for m in composed],
                token,
                self._partial_handler(conversation_id, message_id, token),
            )
            if token.cancelled:
                outcome = TurnOutcome.CANCELLED

        except TurnCancelled:
            outcome = TurnOutcome.CANCELLED
        except TransportError as e:
            outcome = TurnOutcome.FAILED
            error = str(e)
            logger.warning("Turn failed in %s: %s", conversation_id, e)
        except Exception as e:
            outcome = TurnOutcome.FAILED
            error = str(e)
            logger.exception("Unexpected error while streaming in %s", conversation_id)
        finally:
            # 6. typing ends however the stream ended; partial text stays
            if self.store.get(conversation_id) is not None:
                self.store.patch_message(conversation_id, message_id, typing=False)
                self.store.stop_typing(conversation_id, token)

        if outcome == TurnOutcome.CANCELLED:
            logger.info("Turn cancelled in %s (%s)", conversation_id, token.reason or "cancelled")
        else:
            logger.info("Turn %s in %s", outcome.value, conversation_id)

        if outcome == TurnOutcome.COMPLETED and self.scheduler is not None:
            await self.scheduler.after_turn(
                conversation_id, message_id, follow_ups=follow_ups, auto_title=auto_title,
            )

        return TurnResult(
            conversation_id=conversation_id,
            message_id=message_id,
            outcome=outcome,
            augmented=augmented,
            error=error,
        )

    async def _augment(
        self,
        request: TurnRequest,
        composed: list[Message],
        message_id: str,
    ) -> tuple[list[Message], bool]:
        if self.retriever is None or not self.settings.RETRIEVAL_ENABLED:
            return composed, False

        conversation = self.store.get(request.conversation_id)
        standpoint = conversation.standpoint if conversation is not None else Standpoint.UNSET
        try:
            result = await self.retriever.retrieve(last_user_text(composed), composed, standpoint=standpoint)
        except Exception as e:
            logger.warning("Retrieval augmentation unavailable, using composed prompt: %s", e)
            return composed, False

        if not result.should_enhance or not result.enhanced_system_message:
            return composed, False

        augmented = list(composed)
        augmented[0] = composed[0].model_copy(update={"text": result.enhanced_system_message})
        self.store.patch_message(
            request.conversation_id, message_id, retrieved_context=list(result.snippets),
        )
        logger.debug("System prompt augmented with %d snippets", len(result.snippets))
        return augmented, True

    def _partial_handler(
        self,
        conversation_id: str,
        message_id: str,
        token: CancellationToken,
    ) -> PartialHandler:
        speak_first_line = (
            self.speaker is not None
            and self.scheduler is not None
            and self.settings.ELEVENLABS_AUTO_SPEAK == "firstLine"
        )
        spoken = False

        def on_partial(patch: dict[str, Any]) -> None:
            nonlocal spoken
            if token.cancelled:
                return
            self.store.patch_message(conversation_id, message_id, **patch)

            text = patch.get("text")
            if speak_first_line and not spoken and text:
                cut = find_speech_cut(text, self.settings.SPEAK_MIN_CUT, self.settings.SPEAK_MAX_CUT)
                if cut is not None:
                    spoken = True
                    self.scheduler.spawn(self.speaker.speak(text[:cut]), "speak-first-line")

        return on_partial

"""ChatOrchestrator — the single entry point the UI and CLI talk to.

Wires the store, state machine, turn executor and side-effect scheduler
together, and turns a (chat mode, conversation id, history) request into the
right path: assistant turn, tangent agent, image generation, role override,
or a plain history sync.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Awaitable, Callable, Optional, Protocol

import anthropic

from config.settings import Settings
from conversation.aifn import TangentAgent, imagine_prompt_from_text
from conversation.commands import CMD_RUN_IMAGINE, ChatMode, RouteKind, route
from conversation.engine import AnthropicStreamer, ChatStreamer, TurnExecutor, TurnResult
from conversation.side_effects import (
    AutoTitler,
    ErrorSink,
    FollowUpSuggester,
    SideEffectScheduler,
    SuggestionGenerator,
    TitleGenerator,
)
from conversation.speech import ElevenLabsSpeaker, Speaker
from core.models import Conversation, Message, PersuasionConfig, Phase, Role, create_message
from retrieval.retriever import ChromaContextRetriever, ContextRetriever
from store.conversations import ConversationStore
from store.shared_links import LinkPutSuccess, LinkStorage
from study.state_machine import ConversationStateMachine, DisplayMode
from study.topics import assign_topic_config

logger = logging.getLogger(__name__)


class ImageGenerator(Protocol):
    async def run(self, conversation_id: str, prompt: str) -> None: ...


class TangentRunner(Protocol):
    async def run(self, conversation_id: str, prompt: str, llm_id: str) -> str: ...


ImaginePromptFn = Callable[[str], Awaitable[Optional[str]]]


class ChatOrchestrator:
    """Top-level coordinator for study conversations."""

    def __init__(
        self,
        settings: Settings | None = None,
        store: ConversationStore | None = None,
        streamer: ChatStreamer | None = None,
        retriever: ContextRetriever | None = None,
        speaker: Speaker | None = None,
        suggestions: SuggestionGenerator | None = None,
        titler: TitleGenerator | None = None,
        tangent_agent: TangentRunner | None = None,
        image_generator: ImageGenerator | None = None,
        imagine_prompt_fn: ImaginePromptFn | None = None,
        link_storage: LinkStorage | None = None,
        error_sink: ErrorSink | None = None,
    ):
        self.settings = settings or Settings()
        self.store = store or ConversationStore(db_path=self.settings.DB_PATH)
        self.state = ConversationStateMachine(self.store)
        self.scheduler = SideEffectScheduler(
            self.store, suggestions=suggestions, titler=titler, error_sink=error_sink,
        )
        self.executor = TurnExecutor(
            self.store,
            streamer or AnthropicStreamer(self.settings),
            settings=self.settings,
            retriever=retriever,
            speaker=speaker,
            scheduler=self.scheduler,
        )
        self.speaker = speaker
        self.tangent_agent = tangent_agent
        self.image_generator = image_generator
        self.imagine_prompt_fn = imagine_prompt_fn
        self.links = link_storage or LinkStorage(db_path=self.store.db_path or self.settings.DB_PATH)

        self.chat_llm_id: str = self.settings.MODEL_CHAT
        self.chat_mode: ChatMode = ChatMode.parse(self.settings.DEFAULT_CHAT_MODE) or ChatMode.IMMEDIATE

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ChatOrchestrator:
        """Build an orchestrator with the real Claude, ChromaDB and ElevenLabs collaborators."""
        settings = settings or Settings()
        client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        store = ConversationStore(db_path=settings.DB_PATH)

        retriever = None
        if settings.RETRIEVAL_ENABLED:
            chroma = ChromaContextRetriever(settings)
            if chroma.init():
                retriever = chroma

        speaker = ElevenLabsSpeaker(settings) if settings.ELEVENLABS_API_KEY else None

        return cls(
            settings=settings,
            store=store,
            streamer=AnthropicStreamer(settings, client=client),
            retriever=retriever,
            speaker=speaker,
            suggestions=FollowUpSuggester(store, settings, client=client),
            titler=AutoTitler(store, settings, client=client),
            tangent_agent=TangentAgent(store, settings, client=client),
            imagine_prompt_fn=partial(imagine_prompt_from_text, settings=settings, client=client),
        )

    async def start(self) -> None:
        """Initialize the database and load saved conversations."""
        await self.store.init()
        loaded = await self.store.load_all()
        logger.info("Orchestrator started (%d conversations loaded)", loaded)

    async def stop(self) -> None:
        """Graceful shutdown: stop streams, settle background tasks, save state."""
        for conversation_id in list(self.store.conversations):
            self.store.abort(conversation_id)
        await self.scheduler.drain()
        await self.store.save_all()
        if isinstance(self.speaker, ElevenLabsSpeaker):
            await self.speaker.aclose()
        logger.info("Orchestrator stopped")

    # --- Conversations ---

    def new_conversation(self, phase: Phase = Phase.DIALOGUE, study_id: str | None = None) -> Conversation:
        return self.store.create_conversation(phase=phase, study_id=study_id)

    def select_topic(self, conversation_id: str, topic: str) -> PersuasionConfig:
        """Bind a topic, with the study's standpoint/strategy when a study id is set."""
        conversation = self.store.require(conversation_id)
        if conversation.study_id:
            config = assign_topic_config(conversation.study_id, topic)
        else:
            logger.warning("No study id for %s, binding topic only", conversation_id)
            config = PersuasionConfig(topic=topic)
        return self.state.bind_config(conversation_id, config)

    def bind_config(
        self,
        conversation_id: str,
        topic: str | None = None,
        standpoint: str | None = None,
        strategy: str | None = None,
    ) -> PersuasionConfig:
        config = PersuasionConfig(topic=topic, standpoint=standpoint, strategy=strategy)
        return self.state.bind_config(conversation_id, config)

    def spawn_memo(self, dialogue_id: str) -> Conversation:
        return self.state.spawn_memo(dialogue_id)

    def display_mode(self, conversation_id: str) -> DisplayMode:
        return self.state.display_mode(conversation_id)

    def clear_conversation(self, conversation_id: str) -> None:
        """Drop all messages and the auto title; config and snapshot stay."""
        self.store.abort(conversation_id)
        self.store.set_messages(conversation_id, [])
        self.store.set_auto_title(conversation_id, "")

    def stop_turn(self, conversation_id: str) -> bool:
        return self.store.abort(conversation_id)

    # --- Turns ---

    async def send_user_message(
        self,
        conversation_id: str,
        text: str,
        chat_mode: ChatMode | str | None = None,
    ) -> TurnResult | None:
        """Append the user's message, then execute the conversation under the chat mode."""
        conversation = self.store.get(conversation_id)
        if conversation is None:
            logger.warning("send_user_message: unknown conversation %s", conversation_id)
            return None
        mode = chat_mode if chat_mode is not None else self.chat_mode
        if ChatMode.parse(mode) == ChatMode.DRAW_IMAGINE_PLUS:
            return await self.imagine_from_text(conversation_id, text)

        history = [*conversation.messages, create_message(Role.USER, text)]
        # shown right away, before the assistant starts
        self.store.set_messages(conversation_id, history)
        return await self.execute_conversation(mode, conversation_id, history)

    async def regenerate(self, conversation_id: str, history: list[Message]) -> TurnResult | None:
        return await self.execute_conversation(ChatMode.IMMEDIATE, conversation_id, history)

    async def imagine_from_text(self, conversation_id: str, text: str) -> TurnResult | None:
        conversation = self.store.get(conversation_id)
        if conversation is None or self.imagine_prompt_fn is None:
            return None
        prompt = await self.imagine_prompt_fn(text)
        if not prompt:
            logger.warning("No image prompt could be written for %s", conversation_id)
            return None
        history = [*conversation.messages, create_message(Role.USER, f"{CMD_RUN_IMAGINE[0]} {prompt}")]
        return await self.execute_conversation(ChatMode.IMMEDIATE, conversation_id, history)

    async def execute_conversation(
        self,
        chat_mode: ChatMode | str | None,
        conversation_id: str,
        history: list[Message],
    ) -> TurnResult | None:
        """Route the last turn of `history` and apply it to the store.

        Resolves once the turn and any command side effects are applied.
        Returns the TurnResult for assistant turns, None for other paths.
        """
        if self.store.get(conversation_id) is None or not self.chat_llm_id:
            logger.warning("execute_conversation: unknown conversation %s", conversation_id)
            return None

        decision = route(history, chat_mode)
        self.store.set_messages(conversation_id, decision.history)
        result: TurnResult | None = None

        if decision.kind == RouteKind.ASSISTANT:
            result = await self.executor.execute_turn(
                conversation_id,
                decision.history,
                self.chat_llm_id,
                auto_title=decision.auto_title and self.settings.AUTO_TITLE,
                follow_ups=decision.follow_ups,
            )
        elif decision.kind == RouteKind.TANGENT:
            await self._run_command(
                "tangent", self.tangent_agent,
                lambda agent: agent.run(conversation_id, decision.prompt, self.chat_llm_id),
            )
        elif decision.kind == RouteKind.IMAGE:
            await self._run_command(
                "image", self.image_generator,
                lambda generator: generator.run(conversation_id, decision.prompt),
            )
        else:
            logger.debug("History persisted for %s (%s)", conversation_id, decision.kind.value)

        await self._save(conversation_id)
        return result

    async def _run_command(self, name: str, collaborator, call) -> None:
        if collaborator is None:
            logger.warning("No %s collaborator configured, history persisted only", name)
            return
        try:
            await call(collaborator)
        except Exception:
            logger.exception("%s command failed", name)

    async def _save(self, conversation_id: str) -> None:
        if not self.store.db_path or self.store.get(conversation_id) is None:
            return
        try:
            await self.store.save(conversation_id)
        except Exception:
            logger.exception("Saving conversation %s failed", conversation_id)

    # --- Sharing ---

    async def share_conversation(self, conversation_id: str, owner_id: str) -> LinkPutSuccess:
        """Publish a snapshot of the conversation as a shared link."""
        conversation = self.store.require(conversation_id)
        data = conversation.model_dump(mode="json")
        data["study_id"] = conversation.study_id
        data["search_topic"] = conversation.topic
        return await self.links.put(
            owner_id,
            data,
            study_id=conversation.study_id,
            search_topic=conversation.topic,
            expires_seconds=self.settings.SHARE_EXPIRES_SECONDS,
        )

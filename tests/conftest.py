from __future__ import annotations

import pytest

from config.settings import Settings
from conversation.engine import TurnExecutor
from conversation.side_effects import SideEffectScheduler
from core.models import Phase
from core.token_tracker import TokenTracker
from store.conversations import ConversationStore
from tests.fakes import FakeStreamer
from tests.helpers import TODAY


@pytest.fixture(autouse=True)
def reset_token_tracker() -> None:
    TokenTracker().reset()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ANTHROPIC_API_KEY="test-key",
        DB_PATH=str(tmp_path / "chats.db"),
        LOG_PATH=str(tmp_path / "test.log"),
        CHROMA_PATH=str(tmp_path / "chroma"),
        ELEVENLABS_API_KEY="",
        ELEVENLABS_AUTO_SPEAK="off",
        RETRIEVAL_ENABLED=True,
    )


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def conversation(store: ConversationStore):
    return store.create_conversation(phase=Phase.DIALOGUE)


@pytest.fixture
def streamer() -> FakeStreamer:
    return FakeStreamer()


@pytest.fixture
def scheduler(store: ConversationStore) -> SideEffectScheduler:
    return SideEffectScheduler(store)


@pytest.fixture
def executor(store, streamer, settings, scheduler) -> TurnExecutor:
    return TurnExecutor(store, streamer, settings=settings, scheduler=scheduler, today_fn=lambda: TODAY)


from __future__ import annotations

import pytest

from core.cancellation import CancellationToken, InFlightRegistry, InFlightTurn
from core.models import Phase, RetrievedSnippet, Role, Standpoint, Strategy, create_message
from store.conversations import ConversationStore


class TestMessages:
    def test_patch_by_id(self, store, conversation):
        message = store.append_message(conversation.id, create_message(Role.ASSISTANT, ""))
        assert store.patch_message(conversation.id, message.id, text="Hi", typing=True) is True

        stored = store.require(conversation.id).find_message(message.id)
        assert stored.text == "Hi"
        assert stored.typing is True
        assert stored.updated is not None

    def test_patch_missing_message(self, store, conversation):
        assert store.patch_message(conversation.id, "gone", text="x") is False

    def test_patch_rejects_fixed_fields(self, store, conversation):
        message = store.append_message(conversation.id, create_message(Role.USER, "Hi"))
        with pytest.raises(ValueError):
            store.patch_message(conversation.id, message.id, role=Role.SYSTEM)

    def test_patch_converts_snippet_dicts(self, store, conversation):
        message = store.append_message(conversation.id, create_message(Role.ASSISTANT, ""))
        store.patch_message(
            conversation.id, message.id,
            retrieved_context=[{"content": "c", "score": 0.5, "source": "s"}],
        )
        stored = store.require(conversation.id).find_message(message.id)
        assert stored.retrieved_context == [RetrievedSnippet(content="c", score=0.5, source="s")]

    def test_interleaved_patches_do_not_clobber(self, store, conversation):
        first = store.append_message(conversation.id, create_message(Role.ASSISTANT, ""))
        second = store.append_message(conversation.id, create_message(Role.ASSISTANT, ""))
        store.patch_message(conversation.id, first.id, text="one")
        store.patch_message(conversation.id, second.id, follow_ups=["q"])
        store.patch_message(conversation.id, first.id, follow_ups=["p"])

        conv = store.require(conversation.id)
        assert conv.find_message(first.id).text == "one"
        assert conv.find_message(first.id).follow_ups == ["p"]
        assert conv.find_message(second.id).follow_ups == ["q"]

    def test_set_messages_copies_list(self, store, conversation):
        messages = [create_message(Role.USER, "Hi")]
        store.set_messages(conversation.id, messages)
        messages.append(create_message(Role.USER, "later"))
        assert len(store.require(conversation.id).messages) == 1

    def test_unknown_conversation(self, store):
        with pytest.raises(ValueError):
            store.require("missing")


class TestConversationFields:
    def test_edit_parses_enums(self, store, conversation):
        store.edit_conversation(conversation.id, standpoint="Supporting", strategy="bogus")
        conv = store.require(conversation.id)
        assert conv.standpoint == Standpoint.SUPPORTING
        assert conv.strategy == Strategy.UNSET

    def test_edit_rejects_unknown_fields(self, store, conversation):
        with pytest.raises(ValueError):
            store.edit_conversation(conversation.id, initial_system_message="x")

    def test_initial_snapshot_set_once(self, store, conversation):
        assert store.set_initial_system_message(conversation.id, "first") is True
        assert store.set_initial_system_message(conversation.id, "second") is False
        assert store.require(conversation.id).initial_system_message == "first"

    def test_auto_title_blank_clears(self, store, conversation):
        store.set_auto_title(conversation.id, "Title")
        store.set_auto_title(conversation.id, "")
        assert store.require(conversation.id).auto_title is None


class TestInFlight:
    def test_replace_cancels_previous(self):
        registry = InFlightRegistry()
        first, second = CancellationToken(), CancellationToken()
        registry.replace("c1", InFlightTurn(first, "m1"))
        previous = registry.replace("c1", InFlightTurn(second, "m2"))

        assert previous.message_id == "m1"
        assert first.cancelled and first.reason == "superseded"
        assert not second.cancelled
        assert registry.get("c1").token is second

    def test_release_only_by_owner(self):
        registry = InFlightRegistry()
        first, second = CancellationToken(), CancellationToken()
        registry.replace("c1", InFlightTurn(first, "m1"))
        registry.replace("c1", InFlightTurn(second, "m2"))

        assert registry.release("c1", first) is False
        assert registry.get("c1").token is second
        assert registry.release("c1", second) is True
        assert registry.get("c1") is None

    def test_slots_are_per_conversation(self):
        registry = InFlightRegistry()
        first, second = CancellationToken(), CancellationToken()
        registry.replace("c1", InFlightTurn(first, "m1"))
        registry.replace("c2", InFlightTurn(second, "m2"))
        assert not first.cancelled

    def test_abort(self):
        registry = InFlightRegistry()
        token = CancellationToken()
        registry.replace("c1", InFlightTurn(token, "m1"))
        assert registry.abort("c1") is True
        assert token.reason == "aborted"
        assert registry.abort("c2") is False

    def test_start_typing_clears_previous_placeholder(self, store, conversation):
        first = store.append_message(conversation.id, create_message(Role.ASSISTANT, ""))
        store.patch_message(conversation.id, first.id, typing=True)
        store.start_typing(conversation.id, CancellationToken(), first.id)

        second = store.append_message(conversation.id, create_message(Role.ASSISTANT, ""))
        store.patch_message(conversation.id, second.id, typing=True)
        store.start_typing(conversation.id, CancellationToken(), second.id)

        assert [m.id for m in store.typing_messages(conversation.id)] == [second.id]

    def test_cancel_is_one_shot(self):
        token = CancellationToken()
        token.cancel("aborted")
        token.cancel("superseded")
        assert token.reason == "aborted"


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        db_path = str(tmp_path / "chats.db")
        store = ConversationStore(db_path=db_path)
        await store.init()

        conv = store.create_conversation(phase=Phase.DIALOGUE, study_id="P-1")
        store.edit_conversation(conv.id, topic="Uniforms", standpoint="opposing", strategy="clarification")
        store.set_initial_system_message(conv.id, "snapshot")
        store.append_message(conv.id, create_message(Role.USER, "Hi"))
        reply = store.append_message(conv.id, create_message(Role.ASSISTANT, "Hello"))
        store.patch_message(
            conv.id, reply.id, typing=True, follow_ups=["Why?"],
            retrieved_context=[RetrievedSnippet(content="c", score=0.7, source="s")],
        )
        await store.save(conv.id)

        reloaded = ConversationStore(db_path=db_path)
        assert await reloaded.load_all() == 1
        loaded = reloaded.require(conv.id)

        assert loaded.topic == "Uniforms"
        assert loaded.standpoint == Standpoint.OPPOSING
        assert loaded.strategy == Strategy.CLARIFICATION
        assert loaded.initial_system_message == "snapshot"
        assert loaded.study_id == "P-1"
        assert [m.text for m in loaded.messages] == ["Hi", "Hello"]
        message = loaded.find_message(reply.id)
        assert message.typing is False
        assert message.follow_ups == ["Why?"]
        assert message.retrieved_context[0].score == 0.7

    @pytest.mark.asyncio
    async def test_in_memory_store_skips_persistence(self, store, conversation):
        await store.init()
        await store.save(conversation.id)
        assert await store.load_all() == 0

from __future__ import annotations

import asyncio

import pytest

from conversation.aifn import TangentAgent, imagine_prompt_from_text, parse_json_block
from conversation.side_effects import (
    MAX_FOLLOW_UPS,
    AutoTitler,
    FollowUpSuggester,
    SideEffectScheduler,
    clean_title,
)
from core.models import Role, create_message
from core.token_tracker import TokenTracker
from tests.fakes import FakeAnthropicClient, FakeSuggestions, FakeTitler


def seed_exchange(store, conversation_id, user="Are phones bad in class?", assistant="They can distract."):
    store.append_message(conversation_id, create_message(Role.USER, user))
    reply = store.append_message(conversation_id, create_message(Role.ASSISTANT, assistant))
    return reply.id


class TestScheduler:
    @pytest.mark.asyncio
    async def test_failure_isolated_from_other_task(self, store, conversation):
        errors = []
        titler = FakeTitler(store, title="Phones")
        scheduler = SideEffectScheduler(
            store,
            suggestions=FakeSuggestions(store, error=RuntimeError("suggestions down")),
            titler=titler,
            error_sink=lambda name, error: errors.append((name, str(error))),
        )
        message_id = seed_exchange(store, conversation.id)

        await scheduler.after_turn(conversation.id, message_id, follow_ups=True, auto_title=True)

        assert store.require(conversation.id).title == "Phones"
        assert errors == [("follow-ups", "suggestions down")]
        assert store.require(conversation.id).find_message(message_id).text == "They can distract."

    @pytest.mark.asyncio
    async def test_title_skipped_when_present(self, store, conversation):
        titler = FakeTitler(store)
        scheduler = SideEffectScheduler(store, titler=titler)
        store.edit_conversation(conversation.id, user_title="My own title")
        message_id = seed_exchange(store, conversation.id)

        await scheduler.after_turn(conversation.id, message_id, auto_title=True)

        assert titler.calls == []

    @pytest.mark.asyncio
    async def test_failures_recorded_without_sink(self, store, conversation):
        scheduler = SideEffectScheduler(store, titler=FakeTitler(store, error=ValueError("nope")))
        message_id = seed_exchange(store, conversation.id)

        await scheduler.after_turn(conversation.id, message_id, auto_title=True)

        assert [f.task_name for f in scheduler.failures] == ["auto-title"]

    @pytest.mark.asyncio
    async def test_spawned_failure_reaches_sink(self, store):
        errors = []
        scheduler = SideEffectScheduler(store, error_sink=lambda name, error: errors.append(name))

        async def boom():
            raise RuntimeError("background failure")

        scheduler.spawn(boom(), "speak-first-line")
        await scheduler.drain()
        await asyncio.sleep(0)

        assert errors == ["speak-first-line"]
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_raising_sink_does_not_propagate(self, store, conversation):
        def sink(name, error):
            raise RuntimeError("sink broken")

        scheduler = SideEffectScheduler(store, titler=FakeTitler(store, error=ValueError("x")), error_sink=sink)
        message_id = seed_exchange(store, conversation.id)
        await scheduler.after_turn(conversation.id, message_id, auto_title=True)
        assert len(scheduler.failures) == 1


class TestFollowUpSuggester:
    @pytest.mark.asyncio
    async def test_stores_at_most_three(self, store, conversation, settings):
        client = FakeAnthropicClient(['```json\n["A?", "B?", "C?", "D?"]\n```'])
        suggester = FollowUpSuggester(store, settings, client=client)
        message_id = seed_exchange(store, conversation.id)

        await suggester.generate(conversation.id, message_id)

        message = store.require(conversation.id).find_message(message_id)
        assert message.follow_ups == ["A?", "B?", "C?"][:MAX_FOLLOW_UPS]
        request = client.messages.requests[0]
        assert request["model"] == settings.MODEL_SUGGESTIONS
        assert "Are phones bad in class?" in request["messages"][0]["content"]
        assert TokenTracker().api_calls == 1

    @pytest.mark.asyncio
    async def test_invalid_reply_raises(self, store, conversation, settings):
        suggester = FollowUpSuggester(store, settings, client=FakeAnthropicClient(["no json here"]))
        message_id = seed_exchange(store, conversation.id)

        with pytest.raises(ValueError):
            await suggester.generate(conversation.id, message_id)
        assert store.require(conversation.id).find_message(message_id).follow_ups == []

    @pytest.mark.asyncio
    async def test_empty_message_skipped(self, store, conversation, settings):
        client = FakeAnthropicClient(['["A?"]'])
        suggester = FollowUpSuggester(store, settings, client=client)
        message_id = seed_exchange(store, conversation.id, assistant="   ")

        await suggester.generate(conversation.id, message_id)
        assert client.messages.requests == []


class TestAutoTitler:
    @pytest.mark.asyncio
    async def test_sets_auto_title(self, store, conversation, settings):
        client = FakeAnthropicClient(['"Phones In The Classroom."'])
        titler = AutoTitler(store, settings, client=client)
        seed_exchange(store, conversation.id)

        await titler.generate(conversation.id)

        assert store.require(conversation.id).auto_title == "Phones In The Classroom"
        assert client.messages.requests[0]["model"] == settings.MODEL_TITLE

    @pytest.mark.asyncio
    async def test_no_messages_no_call(self, store, conversation, settings):
        client = FakeAnthropicClient(["Title"])
        await AutoTitler(store, settings, client=client).generate(conversation.id)
        assert client.messages.requests == []

    def test_clean_title(self):
        assert clean_title("Title: Phones at school.\nextra") == "Phones at school"
        assert clean_title("one two three four five six seven eight nine ten") == (
            "one two three four five six seven eight"
        )
        assert clean_title("   ") == ""


class TestAuxiliaryCalls:
    def test_parse_json_block(self):
        assert parse_json_block('Sure! ["a", "b"] hope that helps') == ["a", "b"]
        assert parse_json_block('{"x": 1}') == {"x": 1}
        assert parse_json_block("nothing") is None

    @pytest.mark.asyncio
    async def test_tangent_agent_final_answer(self, store, conversation, settings):
        client = FakeAnthropicClient(["France is in Europe.\nIts capital is Paris.\nAnswer: Paris"])
        agent = TangentAgent(store, settings, client=client)

        message_id = await agent.run(conversation.id, "find the capital of France", "model-x")

        message = store.require(conversation.id).find_message(message_id)
        assert message.text == "Paris"
        assert message.typing is False
        assert message.origin_llm == "react-model-x"
        assert "find the capital of France" in client.messages.requests[0]["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_tangent_agent_error_clears_typing(self, store, conversation, settings):
        agent = TangentAgent(store, settings, client=FakeAnthropicClient(error=RuntimeError("socket closed")))

        with pytest.raises(RuntimeError):
            await agent.run(conversation.id, "why?", "model-x")

        message = store.require(conversation.id).messages[-1]
        assert message.text == "Issue: socket closed"
        assert message.typing is False
        assert not store.is_typing(conversation.id)

    @pytest.mark.asyncio
    async def test_imagine_prompt(self, settings):
        client = FakeAnthropicClient(['"A fox in the snow, watercolor"'])
        prompt = await imagine_prompt_from_text("Foxes are clever", settings=settings, client=client)
        assert prompt == "A fox in the snow, watercolor"

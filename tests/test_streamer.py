from __future__ import annotations

import asyncio

import anthropic
import httpx
import pytest

from conversation.engine import AnthropicStreamer
from core.cancellation import CancellationToken
from core.errors import TransportError, TurnCancelled
from core.token_tracker import TokenTracker
from tests.fakes import FakeStream, FakeStreamingClient
from tests.helpers import wait_for

MESSAGES = [
    {"role": "system", "content": "Be kind."},
    {"role": "user", "content": "Hi"},
    {"role": "assistant", "content": "   "},
    {"role": "user", "content": "Still there?"},
]


class TestAnthropicStreamer:
    @pytest.mark.asyncio
    async def test_growing_text_and_request_shape(self, settings):
        client = FakeStreamingClient(FakeStream(["Hel", "lo", "!"]))
        streamer = AnthropicStreamer(settings, client=client)
        patches = []

        await streamer.stream("model-x", MESSAGES, CancellationToken(), patches.append)

        assert [p["text"] for p in patches] == ["Hel", "Hello", "Hello!"]
        assert client.kwargs["system"] == "Be kind."
        assert client.kwargs["model"] == "model-x"
        assert client.kwargs["messages"] == [
            {"role": "user", "content": "Hi"},
            {"role": "user", "content": "Still there?"},
        ]
        assert TokenTracker().by_model == {"model-x": 15}

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_patch(self, settings):
        token = CancellationToken()
        deltas_seen = []

        def cancel_on_second(delta):
            deltas_seen.append(delta)
            if len(deltas_seen) == 2:
                token.cancel("aborted")

        client = FakeStreamingClient(FakeStream(["a", "b", "c"], on_delta=cancel_on_second))
        patches = []

        with pytest.raises(TurnCancelled):
            await AnthropicStreamer(settings, client=client).stream("m", MESSAGES, token, patches.append)
        assert patches == [{"text": "a"}]

    @pytest.mark.asyncio
    async def test_api_error_becomes_transport_error(self, settings):
        error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        client = FakeStreamingClient(FakeStream(["partial"], error=error))
        patches = []

        with pytest.raises(TransportError):
            await AnthropicStreamer(settings, client=client).stream("m", MESSAGES, CancellationToken(), patches.append)
        assert patches == [{"text": "partial"}]

    @pytest.mark.asyncio
    async def test_abort_interrupts_stalled_read(self, settings):
        stream = FakeStream(["Hello"], hang=True)
        client = FakeStreamingClient(stream)
        token = CancellationToken()
        patches = []

        task = asyncio.create_task(
            AnthropicStreamer(settings, client=client).stream("m", MESSAGES, token, patches.append)
        )
        await wait_for(lambda: len(patches) == 1)
        token.cancel("aborted")

        with pytest.raises(TurnCancelled):
            await asyncio.wait_for(task, timeout=1)
        assert patches == [{"text": "Hello"}]
        assert stream.closed

"""Tests for the provider stream adapter, using a fake OpenAI-compatible client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from Folio.services.ai.model_stream import ERROR, FINISH, TEXT_DELTA, stream_model_events


def _chunk(content=None, finish_reason=None, total_tokens=None, no_choices=False):
    usage = SimpleNamespace(total_tokens=total_tokens) if total_tokens is not None else None
    if no_choices:
        return SimpleNamespace(choices=[], usage=usage)
    choice = SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)
    return SimpleNamespace(choices=[choice], usage=usage)


class FakeStream:
    def __init__(self, chunks, error=None):
        self._chunks = list(chunks)
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    async def close(self):
        self.closed = True


def _client_for(stream):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=stream)
    client.close = AsyncMock()
    return client


async def _collect(client, api_key="sk-test", provider="openai"):
    factory = MagicMock(return_value=client)
    events = [
        event
        async for event in stream_model_events(
            provider, "gpt-4o-mini", api_key, [{"role": "user", "content": "hi"}], client_factory=factory
        )
    ]
    return events, factory


class TestStreamModelEvents:
    @pytest.mark.asyncio
    async def test_deltas_then_finish_with_usage(self):
        stream = FakeStream(
            [_chunk("Hel"), _chunk("lo"), _chunk(None, finish_reason="stop"), _chunk(no_choices=True, total_tokens=12)]
        )
        client = _client_for(stream)

        events, factory = await _collect(client)

        assert [(e.type, e.text) for e in events[:-1]] == [(TEXT_DELTA, "Hel"), (TEXT_DELTA, "lo")]
        assert events[-1].type == FINISH
        assert events[-1].finish_reason == "stop"
        assert events[-1].total_tokens == 12

        factory.assert_called_once_with("openai", api_key="sk-test")
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert kwargs["model"] == "gpt-4o-mini"
        assert stream.closed
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_finish_reason_defaults_to_stop(self):
        events, _ = await _collect(_client_for(FakeStream([_chunk("x")])))
        assert events[-1].type == FINISH
        assert events[-1].finish_reason == "stop"
        assert events[-1].total_tokens is None

    @pytest.mark.asyncio
    async def test_provider_error_becomes_error_event_without_key(self):
        error = openai.APIConnectionError(
            message="connection reset for key sk-test", request=httpx.Request("POST", "https://api.example.com")
        )
        client = _client_for(FakeStream([_chunk("partial")], error=error))

        events, _ = await _collect(client)

        assert [e.type for e in events] == [TEXT_DELTA, ERROR]
        assert "sk-test" not in events[-1].error
        assert "***" in events[-1].error
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsupported_provider_is_an_error_event(self):
        events = [event async for event in stream_model_events("acme", "m", "k", [])]
        assert len(events) == 1
        assert events[0].type == ERROR
        assert "Unsupported provider" in events[0].error

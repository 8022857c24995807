"""Tests for the chat service: send/generate entry points and per-conversation claims."""

import asyncio

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine

from conftest import USER_ID, ScriptedModel, deltas
from Folio.database import Base, create_session_factory
from Folio.services.api_keys import ApiKeyStore
from Folio.services.block_store import BlockStore
from Folio.services.chat_service import ChatService
from Folio.services.chat_stream import BlockResponseStreamer, GenerationHandle
from Folio.services.errors import GenerationInProgressError


def _service(store, api_keys, model):
    api_keys.upsert_api_keys(USER_ID, {"openai": "sk-openai-key-1111", "google": "AIza-google-key-2222"})
    return ChatService(store, BlockResponseStreamer(store, invoke_model=model), api_keys)


@pytest.fixture
def file_session_factory(tmp_path):
    """On-disk SQLite, so concurrent worker threads each get their own connection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'folio.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield create_session_factory(engine)
    engine.dispose()


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_concurrent_sends_to_one_conversation(self, file_session_factory):
        """Only one of two simultaneous sends writes a user block; the other is rejected untouched."""
        store = BlockStore(file_session_factory)
        gate = asyncio.Event()
        model = ScriptedModel(deltas("reply"), gates=[gate])
        svc = _service(store, ApiKeyStore(file_session_factory, "test-secret"), model)
        conv = store.create_conversation(USER_ID, "gpt-4o-mini")

        def send(text):
            return svc.send_message(
                user_id=USER_ID, text=text, model="gpt-4o-mini", provider="openai", conversation_id=conv.id
            )

        results = await asyncio.gather(send("first"), send("second"), return_exceptions=True)

        handles = [r for r in results if isinstance(r, GenerationHandle)]
        rejected = [r for r in results if isinstance(r, GenerationInProgressError)]
        assert len(handles) == 1
        assert len(rejected) == 1

        gate.set()
        await handles[0].task

        blocks = store.list_ordered(USER_ID, conv.id)
        assert [b.author for b in blocks] == ["user", "assistant"]
        assert len({b.order for b in blocks}) == len(blocks)
        assert not svc.streamer.is_generating(conv.id)

    @pytest.mark.asyncio
    async def test_failed_write_releases_the_conversation(self, store, api_keys, conversation, monkeypatch):
        svc = _service(store, api_keys, ScriptedModel(deltas("x")))

        def _fail(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "create_user_block", _fail)
        with pytest.raises(RuntimeError):
            await svc.send_message(
                user_id=USER_ID, text="hi", model="gpt-4o-mini", provider="openai", conversation_id=conversation.id
            )
        assert not svc.streamer.is_generating(conversation.id)

    @pytest.mark.asyncio
    async def test_send_during_generation_is_rejected_before_writing(self, store, api_keys, conversation):
        gate = asyncio.Event()
        svc = _service(store, api_keys, ScriptedModel(deltas("x"), gates=[gate]))
        handle = await svc.send_message(
            user_id=USER_ID, text="one", model="gpt-4o-mini", provider="openai", conversation_id=conversation.id
        )

        with pytest.raises(GenerationInProgressError):
            await svc.send_message(
                user_id=USER_ID, text="two", model="gpt-4o-mini", provider="openai", conversation_id=conversation.id
            )
        assert [b.author for b in store.list_ordered(USER_ID, conversation.id)] == ["user", "assistant"]

        gate.set()
        await handle.task


class TestProviderResolution:
    @pytest.mark.asyncio
    async def test_provider_is_inferred_from_model(self, store, api_keys):
        model = ScriptedModel(deltas("hi"))
        svc = _service(store, api_keys, model)

        handle = await svc.send_message(user_id=USER_ID, text="hello", model="gemini-2.0-flash")
        await handle.task

        assert model.calls[0]["provider"] == "google"
        assert model.calls[0]["api_key"] == "AIza-google-key-2222"

    @pytest.mark.asyncio
    async def test_unknown_model_without_provider_is_bad_request(self, store, api_keys):
        svc = _service(store, api_keys, ScriptedModel(deltas("hi")))
        with pytest.raises(HTTPException) as excinfo:
            await svc.send_message(user_id=USER_ID, text="hello", model="mystery-model")
        assert excinfo.value.status_code == 400

    @pytest.mark.asyncio
    async def test_explicit_provider_wins(self, store, api_keys):
        model = ScriptedModel(deltas("hi"))
        svc = _service(store, api_keys, model)

        handle = await svc.send_message(user_id=USER_ID, text="hello", model="custom-model", provider=" OpenAI ")
        await handle.task

        assert model.calls[0]["provider"] == "openai"

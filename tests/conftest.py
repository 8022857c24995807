"""Shared test fixtures: in-memory database, stores and scripted model streams."""

import asyncio
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import Folio.models  # noqa: F401  # registers tables on Base.metadata
from Folio.database import Base, create_session_factory
from Folio.services.ai.model_stream import ModelStreamEvent
from Folio.services.api_keys import ApiKeyStore
from Folio.services.block_events import BlockEventBus
from Folio.services.block_store import BlockStore

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def events():
    return BlockEventBus()


@pytest.fixture
def store(session_factory, events):
    return BlockStore(session_factory, events=events)


@pytest.fixture
def api_keys(session_factory):
    return ApiKeyStore(session_factory, "test-secret")


@pytest.fixture
def conversation(store):
    return store.create_conversation(USER_ID, "gpt-4o-mini")


class ScriptedModel:
    """Stand-in for the provider stream: replays events and records each call.

    The n-th call waits on ``gates[n]`` (when present) before emitting anything,
    which lets tests hold individual generations open.
    """

    def __init__(
        self,
        events: list[ModelStreamEvent],
        gates: Optional[list[asyncio.Event]] = None,
        raise_after: Optional[Exception] = None,
    ):
        self.events = events
        self.gates = gates or []
        self.raise_after = raise_after
        self.calls: list[dict] = []

    async def __call__(self, provider, model, api_key, messages):
        index = len(self.calls)
        self.calls.append({"provider": provider, "model": model, "api_key": api_key, "messages": messages})
        if index < len(self.gates):
            await self.gates[index].wait()
        for event in self.events:
            yield event
        if self.raise_after is not None:
            raise self.raise_after


def deltas(*pieces: str, finish_reason: str = "stop", total_tokens: Optional[int] = None) -> list[ModelStreamEvent]:
    events = [ModelStreamEvent(type="text-delta", text=piece) for piece in pieces]
    events.append(ModelStreamEvent(type="finish", finish_reason=finish_reason, total_tokens=total_tokens))
    return events

"""Tests for the in-process change bus and its Redis mirror."""

import asyncio
import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import redis

from Folio.services.block_events import BLOCK_UPDATED, BlockChange, BlockEventBus, RedisBlockEventPublisher


class TestBlockEventBus:
    @pytest.mark.asyncio
    async def test_changes_reach_only_matching_subscribers(self):
        bus = BlockEventBus()
        mine = bus.subscribe("c1")
        other = bus.subscribe("c2")

        bus.publish(BlockChange("c1", "b1", BLOCK_UPDATED))

        assert await asyncio.wait_for(mine.get(), timeout=1) == BlockChange("c1", "b1", BLOCK_UPDATED)
        await asyncio.sleep(0)
        assert other.empty()

    @pytest.mark.asyncio
    async def test_publish_from_worker_thread(self):
        bus = BlockEventBus()
        queue = bus.subscribe("c1")

        await asyncio.to_thread(bus.publish, BlockChange("c1", "b1", BLOCK_UPDATED))

        assert (await asyncio.wait_for(queue.get(), timeout=1)).block_id == "b1"

    @pytest.mark.asyncio
    async def test_full_queue_drops_changes(self, caplog):
        bus = BlockEventBus(max_queue_size=1)
        queue = bus.subscribe("c1")

        with caplog.at_level(logging.WARNING):
            bus.publish(BlockChange("c1", "b1", BLOCK_UPDATED))
            bus.publish(BlockChange("c1", "b2", BLOCK_UPDATED))
            await asyncio.sleep(0)

        assert queue.qsize() == 1
        assert queue.get_nowait().block_id == "b1"
        assert "block.events.drop" in caplog.text

    def test_failing_forwarder_does_not_break_publish(self, caplog):
        seen = []

        def broken(change):
            raise RuntimeError("down")

        bus = BlockEventBus(forwarders=[broken, seen.append])
        change = BlockChange("c1", None, BLOCK_UPDATED)
        with caplog.at_level(logging.ERROR):
            bus.publish(change)

        assert seen == [change]
        assert "block.events.forward.error" in caplog.text

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = BlockEventBus()
        first = bus.subscribe("c1")
        second = bus.subscribe("c1")
        assert bus.subscriber_count("c1") == 2

        bus.unsubscribe("c1", first)
        assert bus.subscriber_count("c1") == 1
        bus.unsubscribe("c1", second)
        assert bus.subscriber_count("c1") == 0


class TestRedisBlockEventPublisher:
    def test_publishes_json_on_conversation_channel(self):
        client = MagicMock()
        with patch("Folio.services.block_events.redis.from_url", return_value=client) as from_url:
            publisher = RedisBlockEventPublisher("redis://localhost:6379/0")

        publisher(BlockChange("c1", "b1", BLOCK_UPDATED))

        from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
        channel, payload = client.publish.call_args.args
        assert channel == "folio:blocks:c1"
        assert json.loads(payload) == {"conversation_id": "c1", "block_id": "b1", "kind": "updated"}

    def test_redis_outage_is_logged_not_raised(self, caplog):
        client = MagicMock()
        client.publish.side_effect = redis.ConnectionError("refused")
        with patch("Folio.services.block_events.redis.from_url", return_value=client):
            publisher = RedisBlockEventPublisher("redis://localhost:6379/0")

        with caplog.at_level(logging.WARNING):
            publisher(BlockChange("c1", "b1", BLOCK_UPDATED))

        assert "block.events.redis.unavailable" in caplog.text

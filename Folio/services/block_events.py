from __future__ import annotations

import asyncio
import json
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, Optional

import redis

logger = logging.getLogger(__name__)

# Kinds of change a subscriber can observe
BLOCK_CREATED = "created"
BLOCK_UPDATED = "updated"
BLOCK_DELETED = "deleted"
BLOCK_STREAMING = "streaming"
BLOCK_COMPLETED = "completed"
CONVERSATION_UPDATED = "conversation"


@dataclass(frozen=True)
class BlockChange:
    conversation_id: str
    block_id: Optional[str]
    kind: str

    def to_json(self) -> dict:
        return asdict(self)


# Fan-out of block changes to per-conversation asyncio queues.
# publish() may be called from any thread (store calls run in FastAPI's threadpool).
class BlockEventBus:
    def __init__(self, max_queue_size: int = 256, forwarders: Optional[list[Callable[[BlockChange], None]]] = None):
        self.max_queue_size = max_queue_size
        self._forwarders = list(forwarders or [])
        self._subscribers: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {}
        self._lock = threading.Lock()

    def add_forwarder(self, forwarder: Callable[[BlockChange], None]) -> None:
        self._forwarders.append(forwarder)

    # Must be called from inside the event loop that will consume the queue
    def subscribe(self, conversation_id: str) -> asyncio.Queue:
        queue: asyncio.Queue[BlockChange] = asyncio.Queue(maxsize=self.max_queue_size)
        loop = asyncio.get_running_loop()
        with self._lock:
            self._subscribers.setdefault(conversation_id, []).append((loop, queue))
        return queue

    def unsubscribe(self, conversation_id: str, queue: asyncio.Queue) -> None:
        with self._lock:
            entries = self._subscribers.get(conversation_id, [])
            remaining = [(loop, q) for loop, q in entries if q is not queue]
            if remaining:
                self._subscribers[conversation_id] = remaining
            else:
                self._subscribers.pop(conversation_id, None)

    def subscriber_count(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(conversation_id, []))

    def publish(self, change: BlockChange) -> None:
        with self._lock:
            entries = list(self._subscribers.get(change.conversation_id, []))

        for loop, queue in entries:
            try:
                loop.call_soon_threadsafe(self._put_nowait, queue, change)
            except RuntimeError:
                # Loop already closed; the subscriber is gone
                self.unsubscribe(change.conversation_id, queue)

        for forward in self._forwarders:
            try:
                forward(change)
            except Exception:
                logger.exception("block.events.forward.error: conv=%s kind=%s", change.conversation_id, change.kind)

    @staticmethod
    def _put_nowait(queue: asyncio.Queue, change: BlockChange) -> None:
        try:
            queue.put_nowait(change)
        except asyncio.QueueFull:
            # Slow subscriber: drop rather than buffer unboundedly
            logger.warning("block.events.drop: conv=%s kind=%s", change.conversation_id, change.kind)


# Mirrors block changes to Redis pub/sub so other processes can relay them
class RedisBlockEventPublisher:
    def __init__(self, redis_url: str, channel_prefix: str = "folio:blocks:"):
        self.channel_prefix = channel_prefix
        self._client = redis.from_url(redis_url, decode_responses=True)

    def channel_for(self, conversation_id: str) -> str:
        return f"{self.channel_prefix}{conversation_id}"

    def __call__(self, change: BlockChange) -> None:
        try:
            self._client.publish(self.channel_for(change.conversation_id), json.dumps(change.to_json()))
        # If Redis is down/unreachable, in-process subscribers still get the change
        except redis.RedisError:
            logger.warning("block.events.redis.unavailable: conv=%s", change.conversation_id)

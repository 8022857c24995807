import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from functools import partial
from typing import Iterable, Optional

from Folio.models.conversation_models import Block
from Folio.services.ai.model_stream import ERROR, FINISH, TEXT_DELTA, ModelInvoker, ModelStreamEvent, stream_model_events
from Folio.services.block_store import BlockStore
from Folio.services.errors import GenerationInProgressError
from Folio.services.markdown.parser import markdown_to_document_async
from Folio.services.markdown.serializer import document_to_markdown

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful assistant."
CONTINUE_PROMPT = "Continue"


@dataclass(frozen=True)
class GenerationHandle:
    conversation_id: str
    block_id: str
    stream_id: str
    task: asyncio.Task


# Builds the provider message list from context-eligible blocks, in block order
def assemble_messages(blocks: Iterable[Block], system_prompt: str = SYSTEM_PROMPT) -> list[dict]:
    messages: list[dict] = [{"role": "system", "content": system_prompt}]
    for block in blocks:
        if block.is_excluded:
            continue
        text = document_to_markdown(block.content) if block.content else ""
        if not text:
            continue
        role = "assistant" if block.author == "assistant" else "user"
        messages.append({"role": role, "content": text})

    # A document ending in an AI turn is a "keep going" request; the model still needs a user turn last
    if messages[-1]["role"] == "assistant":
        messages.append({"role": "user", "content": CONTINUE_PROMPT})
    return messages


class _StreamingContentWriter:
    """Writes the running text of a generation to its block, off the provider's path.

    Only the newest snapshot is kept: if a write is still in flight when more
    text arrives, the intermediate snapshots are skipped. ``close()`` waits
    until the last submitted snapshot has been written.
    """

    def __init__(self, store: BlockStore, block_id: str):
        self._store = store
        self._block_id = block_id
        self._pending: Optional[str] = None
        self._wake = asyncio.Event()
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self.writes = 0

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    def submit(self, text: str) -> None:
        self._pending = text
        self._wake.set()

    async def close(self) -> None:
        self._closed = True
        self._wake.set()
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while True:
            await self._wake.wait()
            self._wake.clear()
            text, self._pending = self._pending, None
            if text is not None:
                await self._write(text)
            if self._closed and self._pending is None:
                return

    async def _write(self, text: str) -> None:
        try:
            await asyncio.to_thread(self._store.write_streaming_content, self._block_id, text)
            self.writes += 1
        except Exception:
            logger.exception("chat.stream.write.error: block=%s chars=%d", self._block_id, len(text))


# Materializes a model response into an assistant block, one generation per conversation at a time
class BlockResponseStreamer:
    def __init__(
        self,
        store: BlockStore,
        invoke_model: ModelInvoker = stream_model_events,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self._store = store
        self._invoke_model = invoke_model
        self.system_prompt = system_prompt
        # conversation_id -> running task (None while the placeholder is being prepared)
        self._active: dict[str, Optional[asyncio.Task]] = {}

    def is_generating(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    # Claims the conversation before anything is written; a second claim is a 409
    def reserve(self, conversation_id: str) -> None:
        if conversation_id in self._active:
            raise GenerationInProgressError(conversation_id)
        self._active[conversation_id] = None

    # Drops a claim that never turned into a running generation
    def release(self, conversation_id: str) -> None:
        if self._active.get(conversation_id) is None:
            self._active.pop(conversation_id, None)

    # Prepares context and placeholder, then detaches generation; returns once the placeholder exists.
    # `reserved=True` means the caller already holds the claim from reserve().
    async def start(
        self,
        *,
        actor_id: str,
        conversation_id: str,
        model: str,
        provider: str,
        api_key: str,
        after_order: Optional[float] = None,
        reserved: bool = False,
    ) -> GenerationHandle:
        if not reserved:
            self.reserve(conversation_id)

        try:
            blocks = await asyncio.to_thread(self._store.list_included_ordered, actor_id, conversation_id)
            messages = assemble_messages(blocks, self.system_prompt)
            placeholder = await asyncio.to_thread(
                self._store.create_assistant_placeholder, actor_id, conversation_id, model, after_order
            )
            await asyncio.to_thread(self._store.set_conversation_status, conversation_id, "streaming")
        except BaseException:
            self.release(conversation_id)
            raise

        logger.info(
            "chat.stream.start: conv=%s block=%s provider=%s model=%s messages=%d",
            conversation_id,
            placeholder.id,
            provider,
            model,
            len(messages),
        )
        task = asyncio.create_task(
            self._run_generation(
                conversation_id=conversation_id,
                block_id=placeholder.id,
                model=model,
                provider=provider,
                api_key=api_key,
                messages=messages,
            ),
            name=f"generation:{conversation_id}",
        )
        self._active[conversation_id] = task
        task.add_done_callback(partial(self._generation_done, conversation_id))
        return GenerationHandle(
            conversation_id=conversation_id,
            block_id=placeholder.id,
            stream_id=placeholder.stream_id,
            task=task,
        )

    def _generation_done(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._active.get(conversation_id) is task:
            self._active.pop(conversation_id, None)
        if task.cancelled():
            logger.warning("chat.stream.bg.task.cancelled: conv=%s", conversation_id)
            return
        if task.exception() is not None:
            logger.error("chat.stream.bg.task.error: conv=%s", conversation_id, exc_info=task.exception())

    async def _run_generation(
        self,
        *,
        conversation_id: str,
        block_id: str,
        model: str,
        provider: str,
        api_key: str,
        messages: list[dict],
    ) -> None:
        writer = _StreamingContentWriter(self._store, block_id)
        writer.start()

        accumulated = ""
        finish: Optional[ModelStreamEvent] = None
        failure: Optional[str] = None
        t0_stream = time.perf_counter()
        try:
            async with aclosing(self._invoke_model(provider, model, api_key, messages)) as events:
                async for event in events:
                    if event.type == TEXT_DELTA:
                        if event.text:
                            accumulated += event.text
                            writer.submit(accumulated)
                    elif event.type == FINISH:
                        finish = event
                        break
                    elif event.type == ERROR:
                        failure = event.error or "provider error"
                        break
        except Exception as e:
            logger.exception("chat.stream.error: conv=%s block=%s", conversation_id, block_id)
            failure = str(e) or type(e).__name__
        finally:
            await writer.close()

        if failure is None and finish is None:
            failure = "stream ended without a finish event"

        if failure is not None:
            logger.warning("chat.stream.failed: conv=%s block=%s reason=%s", conversation_id, block_id, failure)
            await self._mark_error(conversation_id)
            return

        try:
            document = await markdown_to_document_async(accumulated)
            await asyncio.to_thread(
                self._store.complete_assistant_block,
                block_id,
                document,
                {"model": model, "finishReason": finish.finish_reason, "tokens": finish.total_tokens},
            )
            await asyncio.to_thread(self._store.set_conversation_status, conversation_id, "completed")
        except Exception:
            logger.exception("chat.stream.finalize.error: conv=%s block=%s", conversation_id, block_id)
            await self._mark_error(conversation_id)
            return

        logger.info(
            "chat.stream.done: conv=%s block=%s chars=%d writes=%d ms=%d",
            conversation_id,
            block_id,
            len(accumulated),
            writer.writes,
            int((time.perf_counter() - t0_stream) * 1000),
        )

    async def _mark_error(self, conversation_id: str) -> None:
        try:
            await asyncio.to_thread(self._store.set_conversation_error, conversation_id)
        except Exception:
            logger.exception("chat.stream.status.error: conv=%s", conversation_id)

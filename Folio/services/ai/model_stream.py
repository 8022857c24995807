import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional

import openai

from Folio.services.openai_compatible_client import get_async_openai_compatible_client

logger = logging.getLogger(__name__)

TEXT_DELTA = "text-delta"
FINISH = "finish"
ERROR = "error"


# One event of a provider stream: a text fragment, the completion marker, or a failure
@dataclass(frozen=True)
class ModelStreamEvent:
    type: str
    text: str = ""
    finish_reason: Optional[str] = None
    total_tokens: Optional[int] = None
    error: Optional[str] = None


ModelInvoker = Callable[[str, str, str, list[dict]], AsyncIterator[ModelStreamEvent]]


# Stream chat completion events from an OpenAI-compatible provider
async def stream_model_events(
    provider: str,
    model: str,
    api_key: str,
    messages: list[dict],
    *,
    client_factory: Callable[..., Any] = get_async_openai_compatible_client,
) -> AsyncIterator[ModelStreamEvent]:
    try:
        client = client_factory(provider, api_key=api_key)
    except ValueError as e:
        yield ModelStreamEvent(type=ERROR, error=str(e))
        return

    finish_reason: Optional[str] = None
    total_tokens: Optional[int] = None
    streamed_chars = 0
    t0_stream = time.perf_counter()
    try:
        async for chunk in _iter_chat_completion_chunks(
            client,
            model=model,
            messages=messages,
            stream=True,
            stream_options={"include_usage": True},
        ):
            usage = getattr(chunk, "usage", None)
            if usage is not None and getattr(usage, "total_tokens", None) is not None:
                total_tokens = usage.total_tokens

            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue

            pieces, fr = _extract_text_pieces_and_finish_reason(choices[0])
            if fr:
                finish_reason = fr
            for piece in pieces:
                streamed_chars += len(piece)
                yield ModelStreamEvent(type=TEXT_DELTA, text=piece)

        logger.info(
            "model.stream.done: provider=%s model=%s chars=%d ms=%d",
            provider,
            model,
            streamed_chars,
            int((time.perf_counter() - t0_stream) * 1000),
        )
        yield ModelStreamEvent(type=FINISH, finish_reason=finish_reason or "stop", total_tokens=total_tokens)
    except openai.OpenAIError as e:
        logger.warning("model.stream.error: provider=%s model=%s type=%s", provider, model, type(e).__name__)
        yield ModelStreamEvent(type=ERROR, error=_redact(str(e), api_key))
    finally:
        try:
            await client.close()
        except Exception:
            logger.debug("model.stream.close.error: provider=%s", provider)


# Yield streaming chat completion chunks and always close the upstream stream
async def _iter_chat_completion_chunks(client: Any, **stream_kwargs: object) -> AsyncIterator[Any]:
    stream = await client.chat.completions.create(**stream_kwargs)
    try:
        async for chunk in stream:
            yield chunk
    finally:
        try:
            await stream.close()
        except Exception:
            logger.debug("model.stream.upstream.close.error")


# Extract streamed text fragments and the finish reason from one choice
def _extract_text_pieces_and_finish_reason(choice: Any) -> tuple[list[str], Optional[str]]:
    finish_reason = getattr(choice, "finish_reason", None)
    pieces: list[str] = []

    delta = getattr(choice, "delta", None)
    if delta is not None:
        content = getattr(delta, "content", None)
        if isinstance(content, str) and content:
            pieces.append(content)

    # Some providers surface streaming text on choice.text
    text_piece = getattr(choice, "text", None)
    if isinstance(text_piece, str) and text_piece:
        pieces.append(text_piece)

    return pieces, finish_reason


def _redact(message: str, api_key: str) -> str:
    if api_key and api_key in message:
        return message.replace(api_key, "***")
    return message

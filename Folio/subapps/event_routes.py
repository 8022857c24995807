import asyncio
import json

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from Folio.auth import get_current_user_id
from Folio.dependencies import get_block_store, get_event_bus
from Folio.services.block_events import BlockEventBus
from Folio.services.block_store import BlockStore


router = APIRouter()

_KEEPALIVE_SECONDS = 15.0


# Server-Sent Events of block changes for one conversation; clients refetch what changed
@router.get("/conversations/{conversation_id}/events")
async def conversation_events(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
    events: BlockEventBus = Depends(get_event_bus),
) -> StreamingResponse:
    await asyncio.to_thread(store.get_conversation, user_id, conversation_id)

    queue = events.subscribe(conversation_id)

    async def generator():
        try:
            yield f"data: {json.dumps({'conversation_id': conversation_id, 'kind': 'subscribed'})}\n\n"
            while True:
                try:
                    change = await asyncio.wait_for(queue.get(), timeout=_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps(change.to_json())}\n\n"
        finally:
            events.unsubscribe(conversation_id, queue)

    return StreamingResponse(
        generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )

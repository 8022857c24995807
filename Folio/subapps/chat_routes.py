from fastapi import APIRouter, Depends

from Folio.auth import get_current_user_id
from Folio.dependencies import get_chat_service
from Folio.schemas.chat import GenerateOut, GenerateRequest, SendMessageOut, SendMessageRequest
from Folio.services.chat_service import ChatService


router = APIRouter()


# Appends the message as a user block and starts the assistant reply in the background
@router.post("/chat/send")
async def send_message(
    payload: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    svc: ChatService = Depends(get_chat_service),
) -> SendMessageOut:
    handle = await svc.send_message(
        user_id=user_id,
        text=payload.message,
        model=payload.model,
        provider=payload.provider,
        conversation_id=payload.conversation_id,
    )
    return SendMessageOut(conversation_id=handle.conversation_id)


# Generates an assistant block from the current document (continue / expand)
@router.post("/conversations/{conversation_id}/generate", status_code=202)
async def generate_block_response(
    conversation_id: str,
    payload: GenerateRequest,
    user_id: str = Depends(get_current_user_id),
    svc: ChatService = Depends(get_chat_service),
) -> GenerateOut:
    handle = await svc.generate_block_response(
        user_id=user_id,
        conversation_id=conversation_id,
        model=payload.model,
        provider=payload.provider,
        after_order=payload.after_order,
    )
    return GenerateOut(conversation_id=handle.conversation_id, block_id=handle.block_id, stream_id=handle.stream_id)

from typing import Optional

from fastapi import APIRouter, Depends

from Folio.auth import get_current_user_id
from Folio.dependencies import get_block_store
from Folio.schemas.chat import ConversationOut, ConversationsOut, TitleUpdate, TokenUsageOut
from Folio.services.block_store import BlockStore
from Folio.services.token_estimator import token_usage


router = APIRouter()


# Retrieves all conversations for a user, most recent first
@router.get("/conversations")
def list_conversations(
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> ConversationsOut:
    conversations = store.list_conversations(user_id)
    return ConversationsOut(conversations=[ConversationOut.model_validate(conv) for conv in conversations])


@router.get("/conversations/{conversation_id}")
def get_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> ConversationOut:
    return ConversationOut.model_validate(store.get_conversation(user_id, conversation_id))


@router.patch("/conversations/{conversation_id}/title")
def update_conversation_title(
    conversation_id: str,
    payload: TitleUpdate,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> ConversationOut:
    return ConversationOut.model_validate(store.set_title(user_id, conversation_id, payload.title.strip()))


@router.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> None:
    store.delete_conversation(user_id, conversation_id)


# Approximate context usage of the included blocks against the model's window
@router.get("/conversations/{conversation_id}/token-usage")
def get_token_usage(
    conversation_id: str,
    model: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> TokenUsageOut:
    conv = store.get_conversation(user_id, conversation_id)
    usage = token_usage(store.list_included_ordered(user_id, conversation_id), model or conv.model)
    return TokenUsageOut(used=usage.used, max=usage.max, label=usage.label)

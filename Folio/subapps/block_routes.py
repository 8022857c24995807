from fastapi import APIRouter, Depends, HTTPException

from Folio.auth import get_current_user_id
from Folio.dependencies import get_block_store
from Folio.schemas.blocks import BlockContentUpdate, BlockCreate, BlockDeleted, BlockExclusionUpdate, BlockOut
from Folio.schemas.document import DocNode, NodeType
from Folio.services.block_store import BlockStore


router = APIRouter()


def _require_document(node: DocNode) -> DocNode:
    if node.type is not NodeType.DOC:
        raise HTTPException(status_code=400, detail=f"document root must be 'doc', got '{node.type.value}'")
    return node


# Lists every block of a conversation in document order
@router.get("/conversations/{conversation_id}/blocks")
def list_blocks(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> list[BlockOut]:
    return [BlockOut.model_validate(block) for block in store.list_ordered(user_id, conversation_id)]


# Creates a user block at the end, or right after `after_order`
@router.post("/conversations/{conversation_id}/blocks", status_code=201)
def create_block(
    conversation_id: str,
    payload: BlockCreate,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> BlockOut:
    content = _require_document(payload.content).to_json() if payload.content is not None else None
    block = store.create_user_block(user_id, conversation_id, payload.after_order, content)
    return BlockOut.model_validate(block)


@router.put("/blocks/{block_id}/content")
def update_block_content(
    block_id: str,
    payload: BlockContentUpdate,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> BlockOut:
    block = store.update_content(user_id, block_id, _require_document(payload.content).to_json())
    return BlockOut.model_validate(block)


@router.patch("/blocks/{block_id}/exclusion")
def toggle_block_exclusion(
    block_id: str,
    payload: BlockExclusionUpdate,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> BlockOut:
    block = store.toggle_exclusion(user_id, block_id, payload.is_excluded)
    return BlockOut.model_validate(block)


@router.delete("/blocks/{block_id}")
def delete_block(
    block_id: str,
    user_id: str = Depends(get_current_user_id),
    store: BlockStore = Depends(get_block_store),
) -> BlockDeleted:
    return BlockDeleted(block_id=store.delete_block(user_id, block_id))

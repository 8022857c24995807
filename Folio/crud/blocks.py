from datetime import datetime, timezone

from sqlalchemy.orm import Session

from Folio.models.conversation_models import Block


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Create a block row
def create_block(session: Session, conversation_id, author, order, content=None, stream_id=None, metadata=None):
    now = _now()
    block = Block(
        conversation_id=conversation_id,
        author=author,
        content=content,
        order=order,
        is_excluded=False,
        is_streaming=False,
        stream_id=stream_id,
        block_metadata=metadata,
        created_at=now,
        updated_at=now,
    )
    session.add(block)
    session.flush()
    return block


def get_block(session: Session, block_id):
    return session.get(Block, block_id)


# All blocks of a conversation, ascending by order
def get_blocks_ordered(session: Session, conversation_id):
    return (
        session.query(Block)
        .filter(Block.conversation_id == conversation_id)
        .order_by(Block.order, Block.created_at)
        .all()
    )


# Context-eligible blocks only; served by the (conversation_id, is_excluded) index
def get_included_blocks_ordered(session: Session, conversation_id):
    return (
        session.query(Block)
        .filter(Block.conversation_id == conversation_id, Block.is_excluded.is_(False))
        .order_by(Block.order, Block.created_at)
        .all()
    )


def get_last_block(session: Session, conversation_id):
    return (
        session.query(Block)
        .filter(Block.conversation_id == conversation_id)
        .order_by(Block.order.desc())
        .first()
    )


# First block strictly after `order`
def get_next_block(session: Session, conversation_id, order):
    return (
        session.query(Block)
        .filter(Block.conversation_id == conversation_id, Block.order > order)
        .order_by(Block.order)
        .first()
    )


# Apply a partial patch and stamp updated_at
def patch_block(session: Session, block: Block, **fields):
    for name, value in fields.items():
        setattr(block, name, value)
    block.updated_at = _now()
    session.flush()
    return block


def delete_block(session: Session, block: Block) -> None:
    session.delete(block)
    session.flush()

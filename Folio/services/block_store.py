"""Persistence-facing operations on conversations and their blocks.

Every public operation takes the acting user id and is gated by an authorizer
before it reads or writes anything. Each call runs in its own short
transaction; changes are announced on the event bus after commit.

The ``write_streaming_content``/``complete_assistant_block``/
``set_conversation_status`` family is used by the streaming coordinator after
the generation request was authorized, so it skips the ownership check.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from Folio.crud import blocks as block_crud
from Folio.crud import conversations as conversation_crud
from Folio.models.conversation_models import Block, Conversation
from Folio.schemas.document import DocNode, empty_document, parse_document
from Folio.services.block_events import (
    BLOCK_COMPLETED,
    BLOCK_CREATED,
    BLOCK_DELETED,
    BLOCK_STREAMING,
    BLOCK_UPDATED,
    CONVERSATION_UPDATED,
    BlockChange,
    BlockEventBus,
)
from Folio.services.errors import AuthorizationError, NotFoundError
from Folio.services.ordering import allocate_order

logger = logging.getLogger(__name__)

CONVERSATION_STATUSES = ("idle", "streaming", "completed", "error")

Authorizer = Callable[[Session, str, str], Conversation]


# Default authorizer: the actor must own the conversation
class OwnershipAuthorizer:
    def __call__(self, session: Session, actor_id: str, conversation_id: str) -> Conversation:
        conv = conversation_crud.get_conversation(session, conversation_id)
        if conv is None:
            raise NotFoundError("Conversation", conversation_id)
        if conv.user_id != actor_id:
            raise AuthorizationError()
        return conv


class BlockStore:
    def __init__(
        self,
        session_factory: sessionmaker,
        authorize: Optional[Authorizer] = None,
        events: Optional[BlockEventBus] = None,
    ):
        self._session_factory = session_factory
        self._authorize = authorize or OwnershipAuthorizer()
        self.events = events

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _publish(self, conversation_id: str, block_id: Optional[str], kind: str) -> None:
        if self.events is not None:
            self.events.publish(BlockChange(conversation_id=conversation_id, block_id=block_id, kind=kind))

    def _authorized_block(self, session: Session, actor_id: str, block_id: str) -> Block:
        block = block_crud.get_block(session, block_id)
        if block is None:
            raise NotFoundError("Block", block_id)
        self._authorize(session, actor_id, block.conversation_id)
        return block

    # New blocks go after `after_order`, before whatever block currently follows it
    @staticmethod
    def _next_order(session: Session, conversation_id: str, after_order: Optional[float]) -> float:
        if after_order is None:
            last = block_crud.get_last_block(session, conversation_id)
            return allocate_order(last.order if last is not None else None)
        following = block_crud.get_next_block(session, conversation_id, after_order)
        return allocate_order(after_order, following.order if following is not None else None)

    # ----- conversations ----------------------------------------------------
    def create_conversation(self, actor_id: str, model: str, title: Optional[str] = None) -> Conversation:
        with self._transaction() as session:
            conv = conversation_crud.create_conversation(session, actor_id, model, title=title)
        logger.info("conversation.created: conv=%s", conv.id)
        return conv

    def list_conversations(self, actor_id: str) -> list[Conversation]:
        with self._transaction() as session:
            return conversation_crud.get_conversations_for_user(session, actor_id)

    def get_conversation(self, actor_id: str, conversation_id: str) -> Conversation:
        with self._transaction() as session:
            return self._authorize(session, actor_id, conversation_id)

    def set_title(self, actor_id: str, conversation_id: str, title: str) -> Conversation:
        with self._transaction() as session:
            conv = self._authorize(session, actor_id, conversation_id)
            conversation_crud.update_conversation(session, conv, title=title)
        self._publish(conversation_id, None, CONVERSATION_UPDATED)
        return conv

    def delete_conversation(self, actor_id: str, conversation_id: str) -> None:
        with self._transaction() as session:
            conv = self._authorize(session, actor_id, conversation_id)
            conversation_crud.delete_conversation(session, conv)
        logger.info("conversation.deleted: conv=%s", conversation_id)
        self._publish(conversation_id, None, CONVERSATION_UPDATED)

    # ----- block queries ----------------------------------------------------
    def list_ordered(self, actor_id: str, conversation_id: str) -> list[Block]:
        with self._transaction() as session:
            self._authorize(session, actor_id, conversation_id)
            return block_crud.get_blocks_ordered(session, conversation_id)

    def list_included_ordered(self, actor_id: str, conversation_id: str) -> list[Block]:
        with self._transaction() as session:
            self._authorize(session, actor_id, conversation_id)
            return block_crud.get_included_blocks_ordered(session, conversation_id)

    def get_block(self, actor_id: str, block_id: str) -> Block:
        with self._transaction() as session:
            return self._authorized_block(session, actor_id, block_id)

    # ----- block mutations --------------------------------------------------
    def create_user_block(
        self,
        actor_id: str,
        conversation_id: str,
        after_order: Optional[float] = None,
        content: Optional[Any] = None,
    ) -> Block:
        document = parse_document(content) if content is not None else empty_document()
        with self._transaction() as session:
            self._authorize(session, actor_id, conversation_id)
            order = self._next_order(session, conversation_id, after_order)
            block = block_crud.create_block(session, conversation_id, "user", order, content=document.to_json())
        self._publish(conversation_id, block.id, BLOCK_CREATED)
        return block

    def create_assistant_placeholder(
        self,
        actor_id: str,
        conversation_id: str,
        model: str,
        after_order: Optional[float] = None,
    ) -> Block:
        with self._transaction() as session:
            self._authorize(session, actor_id, conversation_id)
            order = self._next_order(session, conversation_id, after_order)
            block = block_crud.create_block(
                session,
                conversation_id,
                "assistant",
                order,
                stream_id=str(uuid.uuid4()),
                metadata={"model": model},
            )
        self._publish(conversation_id, block.id, BLOCK_CREATED)
        return block

    # Full-document replace; ownership is re-checked on every write
    def update_content(self, actor_id: str, block_id: str, content: Any) -> Block:
        document: DocNode = parse_document(content)
        with self._transaction() as session:
            block = self._authorized_block(session, actor_id, block_id)
            block_crud.patch_block(session, block, content=document.to_json())
        self._publish(block.conversation_id, block.id, BLOCK_UPDATED)
        return block

    # Sets the flag to `is_excluded`, or flips it when no value is given
    def toggle_exclusion(self, actor_id: str, block_id: str, is_excluded: Optional[bool] = None) -> Block:
        with self._transaction() as session:
            block = self._authorized_block(session, actor_id, block_id)
            value = (not block.is_excluded) if is_excluded is None else bool(is_excluded)
            block_crud.patch_block(session, block, is_excluded=value)
        self._publish(block.conversation_id, block.id, BLOCK_UPDATED)
        return block

    def delete_block(self, actor_id: str, block_id: str) -> str:
        with self._transaction() as session:
            block = self._authorized_block(session, actor_id, block_id)
            conversation_id = block.conversation_id
            block_crud.delete_block(session, block)
        self._publish(conversation_id, block_id, BLOCK_DELETED)
        return block_id

    # ----- generation-side writes -------------------------------------------
    def write_streaming_content(self, block_id: str, text: str) -> None:
        with self._transaction() as session:
            block = block_crud.get_block(session, block_id)
            if block is None:
                raise NotFoundError("Block", block_id)
            block_crud.patch_block(session, block, streaming_content=text, is_streaming=True)
            conversation_id = block.conversation_id
        self._publish(conversation_id, block_id, BLOCK_STREAMING)

    def complete_assistant_block(self, block_id: str, content: DocNode, metadata: dict[str, Any]) -> Block:
        with self._transaction() as session:
            block = block_crud.get_block(session, block_id)
            if block is None:
                raise NotFoundError("Block", block_id)
            merged = {**(block.block_metadata or {}), **{k: v for k, v in metadata.items() if v is not None}}
            block_crud.patch_block(
                session,
                block,
                content=content.to_json(),
                streaming_content=None,
                stream_id=None,
                is_streaming=False,
                block_metadata=merged,
            )
        self._publish(block.conversation_id, block_id, BLOCK_COMPLETED)
        return block

    def set_conversation_status(self, conversation_id: str, status: str) -> None:
        if status not in CONVERSATION_STATUSES:
            raise ValueError(f"Unknown conversation status: {status}")
        with self._transaction() as session:
            conv = conversation_crud.get_conversation(session, conversation_id)
            if conv is None:
                raise NotFoundError("Conversation", conversation_id)
            conversation_crud.update_conversation(session, conv, status=status)
        self._publish(conversation_id, None, CONVERSATION_UPDATED)

    def set_conversation_error(self, conversation_id: str) -> None:
        self.set_conversation_status(conversation_id, "error")

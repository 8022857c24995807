import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import relationship

from Folio.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# Container for blocks; owned by exactly one user
class Conversation(Base):
    __tablename__ = "conversations"

    __table_args__ = (
        Index("ix_conversations_user_id_updated_at", "user_id", "updated_at"),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(String(64), index=True, nullable=False)
    title = Column(String(255), nullable=False, default="New Conversation")
    status = Column(String(16), index=True, nullable=False, default="idle")
    model = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    blocks = relationship(
        "Block",
        back_populates="conversation",
        cascade="all, delete-orphan",
    )


# One independently ordered, editable unit of a conversation's document
class Block(Base):
    __tablename__ = "blocks"

    __table_args__ = (
        Index("ix_blocks_conversation_id_order", "conversation_id", "order"),
        Index("ix_blocks_conversation_id_is_excluded", "conversation_id", "is_excluded"),
    )

    id = Column(String(64), primary_key=True, default=_new_id)
    conversation_id = Column(
        String(64),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    author = Column(String(16), nullable=False)

    # Rich document tree (doc JSON); absent while a generation is streaming
    content = Column(JSON, nullable=True)
    # Running Markdown of an in-flight generation
    streaming_content = Column(Text, nullable=True)
    stream_id = Column(String(64), nullable=True)
    is_streaming = Column(Boolean, nullable=False, default=False)

    order = Column(Float, nullable=False)
    is_excluded = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
    block_metadata = Column("metadata", JSON, nullable=True)

    conversation = relationship("Conversation", back_populates="blocks")

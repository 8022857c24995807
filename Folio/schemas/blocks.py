from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from Folio.schemas.document import DocNode


# Block as returned to clients; `metadata` maps from the ORM attribute `block_metadata`
class BlockOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    conversation_id: str
    author: str
    content: Optional[dict[str, Any]] = None
    streaming_content: Optional[str] = None
    stream_id: Optional[str] = None
    is_streaming: bool = False
    order: float
    is_excluded: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="block_metadata")


class BlockCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    after_order: Optional[float] = None
    content: Optional[DocNode] = None


class BlockContentUpdate(BaseModel):
    content: DocNode


class BlockExclusionUpdate(BaseModel):
    # Omitted -> flip the current value
    is_excluded: Optional[bool] = None


class BlockDeleted(BaseModel):
    block_id: str

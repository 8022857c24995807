from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Request body for sending a user message (creates the conversation when conversation_id is omitted)
class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    message: str
    model: str
    provider: Optional[str] = None
    conversation_id: Optional[str] = None


class SendMessageOut(BaseModel):
    conversation_id: str


# Request body for generating an assistant block without new user text
class GenerateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    model: str
    provider: Optional[str] = None
    after_order: Optional[float] = None


class GenerateOut(BaseModel):
    conversation_id: str
    block_id: str
    stream_id: str


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    title: str
    status: str
    model: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConversationsOut(BaseModel):
    conversations: List[ConversationOut]


class TitleUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=255)


class TokenUsageOut(BaseModel):
    used: int
    max: int
    label: str


class ModelOut(BaseModel):
    id: str
    label: str
    context_length: int


class ProviderOut(BaseModel):
    id: str
    name: str
    description: str
    key_placeholder: str
    models: List[ModelOut]


# Plaintext keys keyed by provider id; blank values are ignored
class ApiKeysUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    keys: dict[str, str]


class ApiKeysOut(BaseModel):
    keys: dict[str, str]

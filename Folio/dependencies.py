from fastapi import Request

from Folio.services.api_keys import ApiKeyStore
from Folio.services.block_events import BlockEventBus
from Folio.services.block_store import BlockStore
from Folio.services.chat_service import ChatService


# Dependencies (FastAPI pattern): services are built once in create_app() and live on app.state
def get_block_store(request: Request) -> BlockStore:
    return request.app.state.block_store


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_api_key_store(request: Request) -> ApiKeyStore:
    return request.app.state.api_key_store


def get_event_bus(request: Request) -> BlockEventBus:
    return request.app.state.events

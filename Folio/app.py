import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from Folio.auth import JwtVerifier
from Folio.database import create_db_engine, create_session_factory
from Folio.services.ai.model_stream import ModelInvoker, stream_model_events
from Folio.services.api_keys import ApiKeyStore
from Folio.services.block_events import BlockEventBus, RedisBlockEventPublisher
from Folio.services.block_store import BlockStore
from Folio.services.chat_service import ChatService
from Folio.services.chat_stream import BlockResponseStreamer
from Folio.services.errors import FolioError
from Folio.settings import Settings, load_settings
from Folio.subapps.api_key_routes import router as api_key_router
from Folio.subapps.block_routes import router as block_router
from Folio.subapps.chat_routes import router as chat_router
from Folio.subapps.conversation_routes import router as conversation_router
from Folio.subapps.event_routes import router as event_router

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _folio_error_handler(request: Request, exc: FolioError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.error: path=%s error=%s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Builds the app and wires every collaborator explicitly; tests pass their own factory/invoker
def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[sessionmaker] = None,
    invoke_model: Optional[ModelInvoker] = None,
    events: Optional[BlockEventBus] = None,
    jwt_verifier: Optional[JwtVerifier] = None,
) -> FastAPI:
    settings = settings or load_settings()
    _configure_logging(settings.log_level)

    if session_factory is None:
        session_factory = create_session_factory(create_db_engine(settings.database_url))

    if events is None:
        events = BlockEventBus()
        if settings.redis_url:
            events.add_forwarder(RedisBlockEventPublisher(settings.redis_url))

    store = BlockStore(session_factory, events=events)
    streamer = BlockResponseStreamer(store, invoke_model=invoke_model or stream_model_events)
    api_keys = ApiKeyStore(session_factory, settings.api_key_encryption_secret or "")

    app = FastAPI(title="Folio")
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.events = events
    app.state.block_store = store
    app.state.streamer = streamer
    app.state.api_key_store = api_keys
    app.state.chat_service = ChatService(store, streamer, api_keys)
    app.state.jwt_verifier = jwt_verifier or JwtVerifier.from_settings(settings)

    app.add_exception_handler(FolioError, _folio_error_handler)

    app.include_router(conversation_router)
    app.include_router(block_router)
    app.include_router(chat_router)
    app.include_router(api_key_router)
    app.include_router(event_router)
    return app

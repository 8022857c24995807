from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import HTTPException

from Folio.services.ai.providers import API_PROVIDERS, normalize_provider, provider_for_model
from Folio.services.api_keys import ApiKeyStore
from Folio.services.block_store import BlockStore
from Folio.services.chat_stream import BlockResponseStreamer, GenerationHandle
from Folio.services.markdown.parser import markdown_to_document_async

logger = logging.getLogger(__name__)


class ChatService:
    # Wires the block store, the streaming coordinator and the user's provider keys
    def __init__(self, store: BlockStore, streamer: BlockResponseStreamer, api_keys: ApiKeyStore):
        self.store = store
        self.streamer = streamer
        self.api_keys = api_keys

    # Provider may be omitted when the model id identifies it in the registry
    @staticmethod
    def _validate_provider_and_model(provider: Optional[str], model: Optional[str]) -> tuple[str, str]:
        if not isinstance(model, str) or not model.strip():
            raise HTTPException(status_code=400, detail="Missing model")
        model = model.strip()
        if provider is None or (isinstance(provider, str) and not provider.strip()):
            try:
                return provider_for_model(model), model
            except ValueError as e:
                raise HTTPException(status_code=400, detail=f"Missing provider: {e}")
        provider_l = normalize_provider(provider)
        if provider_l not in API_PROVIDERS:
            raise HTTPException(status_code=400, detail=f"Unsupported provider: {provider_l}")
        return provider_l, model

    # Appends the user's text as a new block (creating the conversation if needed) and starts a reply
    async def send_message(
        self,
        *,
        user_id: str,
        text: str,
        model: str,
        provider: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> GenerationHandle:
        provider, model = self._validate_provider_and_model(provider, model)
        if conversation_id is not None and conversation_id.strip() == "":
            raise HTTPException(status_code=400, detail="conversation_id cannot be empty string")
        if not isinstance(text, str) or not text.strip():
            raise HTTPException(status_code=400, detail="Missing message")

        # Read once here and passed by value into the generation task
        api_key = await asyncio.to_thread(self.api_keys.get_api_key, user_id, provider)

        if conversation_id is None:
            conv = await asyncio.to_thread(self.store.create_conversation, user_id, model)
            conversation_id = conv.id
        else:
            await asyncio.to_thread(self.store.get_conversation, user_id, conversation_id)

        # Held from before the user block is written until the generation task owns it
        self.streamer.reserve(conversation_id)
        try:
            document = await markdown_to_document_async(text)
            block = await asyncio.to_thread(
                self.store.create_user_block, user_id, conversation_id, None, document.to_json()
            )
            logger.info("chat.send: conv=%s block=%s provider=%s model=%s", conversation_id, block.id, provider, model)

            return await self.streamer.start(
                actor_id=user_id,
                conversation_id=conversation_id,
                model=model,
                provider=provider,
                api_key=api_key,
                reserved=True,
            )
        except BaseException:
            self.streamer.release(conversation_id)
            raise

    # Generates an assistant block from the current included blocks, without new user text
    async def generate_block_response(
        self,
        *,
        user_id: str,
        conversation_id: str,
        model: str,
        provider: Optional[str] = None,
        after_order: Optional[float] = None,
    ) -> GenerationHandle:
        provider, model = self._validate_provider_and_model(provider, model)
        await asyncio.to_thread(self.store.get_conversation, user_id, conversation_id)
        api_key = await asyncio.to_thread(self.api_keys.get_api_key, user_id, provider)
        return await self.streamer.start(
            actor_id=user_id,
            conversation_id=conversation_id,
            model=model,
            provider=provider,
            api_key=api_key,
            after_order=after_order,
        )

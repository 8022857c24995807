from fastapi import APIRouter, Depends, HTTPException

from Folio.auth import get_current_user_id
from Folio.dependencies import get_api_key_store
from Folio.schemas.chat import ApiKeysOut, ApiKeysUpdate, ModelOut, ProviderOut
from Folio.services.ai.providers import API_PROVIDERS
from Folio.services.api_keys import ApiKeyStore


router = APIRouter()


# Provider/model registry for model pickers; no auth needed
@router.get("/providers")
def list_providers() -> list[ProviderOut]:
    return [
        ProviderOut(
            id=p.id,
            name=p.name,
            description=p.description,
            key_placeholder=p.key_placeholder,
            models=[ModelOut(id=m.id, label=m.label, context_length=m.context_length) for m in p.models],
        )
        for p in API_PROVIDERS.values()
    ]


# Stored keys, masked
@router.get("/api-keys")
def list_api_keys(
    user_id: str = Depends(get_current_user_id),
    keys: ApiKeyStore = Depends(get_api_key_store),
) -> ApiKeysOut:
    return ApiKeysOut(keys=keys.list_masked(user_id))


@router.put("/api-keys")
def upsert_api_keys(
    payload: ApiKeysUpdate,
    user_id: str = Depends(get_current_user_id),
    keys: ApiKeyStore = Depends(get_api_key_store),
) -> ApiKeysOut:
    try:
        return ApiKeysOut(keys=keys.upsert_api_keys(user_id, payload.keys))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

from typing import Optional

from openai import AsyncOpenAI

from Folio.services.ai.providers import get_provider


# Create an async OpenAI-compatible client for one provider using the caller's own API key
def get_async_openai_compatible_client(provider: Optional[str], *, api_key: str) -> AsyncOpenAI:
    cfg = get_provider(provider)
    if not api_key:
        raise ValueError(f"Missing API key for provider '{cfg.id}'.")

    kwargs = {"api_key": api_key}
    if cfg.base_url:
        kwargs["base_url"] = cfg.base_url
    return AsyncOpenAI(**kwargs)

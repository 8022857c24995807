from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ModelInfo:
    id: str
    label: str
    context_length: int


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    description: str
    key_placeholder: str
    base_url: Optional[str] = None
    models: tuple[ModelInfo, ...] = field(default_factory=tuple)

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None


# Providers are all reached through OpenAI-compatible chat completions endpoints
API_PROVIDERS: dict[str, ProviderInfo] = {
    "openai": ProviderInfo(
        id="openai",
        name="OpenAI",
        description="Access to GPT models and other OpenAI services",
        key_placeholder="sk-...",
        models=(
            ModelInfo("gpt-4o-mini", "GPT 4o-Mini", 128_000),
            ModelInfo("gpt-4o", "GPT 4o", 128_000),
            ModelInfo("gpt-4.1", "GPT 4.1", 1_047_576),
            ModelInfo("gpt-4.1-mini", "GPT 4.1 mini", 1_047_576),
            ModelInfo("gpt-4.1-nano", "GPT 4.1 nano", 1_047_576),
        ),
    ),
    "google": ProviderInfo(
        id="google",
        name="Google AI",
        description="Access to Gemini models and Google AI services",
        key_placeholder="AIza...",
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
        models=(
            ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", 1_048_576),
            ModelInfo("gemini-2.0-flash-lite", "Gemini 2.0 Flash Lite", 1_048_576),
            ModelInfo("gemini-2.5-flash", "Gemini 2.5 Flash", 1_048_576),
            ModelInfo("gemini-2.5-flash-thinking", "Gemini 2.5 Flash (Thinking)", 1_048_576),
            ModelInfo("gemini-2.5-pro", "Gemini 2.5 Pro", 1_048_576),
        ),
    ),
    "openrouter": ProviderInfo(
        id="openrouter",
        name="OpenRouter",
        description="Access to models from many vendors through one key",
        key_placeholder="sk-or-...",
        base_url="https://openrouter.ai/api/v1",
        models=(
            ModelInfo("openai/gpt-4o-mini", "GPT 4o-Mini (OpenRouter)", 128_000),
            ModelInfo("anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet", 200_000),
            ModelInfo("meta-llama/llama-3.1-70b-instruct", "Llama 3.1 70B", 131_072),
        ),
    ),
}

DEFAULT_CONTEXT_LENGTH = 128_000


def normalize_provider(provider: Optional[str]) -> str:
    return (provider or "").strip().lower()


def get_provider(provider: Optional[str]) -> ProviderInfo:
    provider_l = normalize_provider(provider)
    info = API_PROVIDERS.get(provider_l)
    if info is None:
        raise ValueError(f"Unsupported provider: {provider_l}")
    return info


def find_model(model_id: str) -> Optional[ModelInfo]:
    for provider in API_PROVIDERS.values():
        model = provider.get_model(model_id)
        if model is not None:
            return model
    return None


# Context window for a model id; unknown models get a conservative default
def context_length_for(model_id: Optional[str]) -> int:
    model = find_model(model_id or "")
    return model.context_length if model is not None else DEFAULT_CONTEXT_LENGTH


def provider_for_model(model_id: str) -> str:
    for provider in API_PROVIDERS.values():
        if provider.get_model(model_id) is not None:
            return provider.id
    raise ValueError(f"No provider found for model: {model_id}")

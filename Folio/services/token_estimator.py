import json
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from Folio.models.conversation_models import Block
from Folio.services.ai.providers import context_length_for
from Folio.services.markdown.serializer import convert_document

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    used: int
    max: int

    @property
    def label(self) -> str:
        return f"{format_token_count(self.used)} / {format_token_count(self.max)}"


# Advisory estimate, not billing-grade: roughly four characters per token
def approximate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_tokens(blocks: Iterable[Block]) -> int:
    total = 0
    for block in blocks:
        if block.is_excluded or not block.content:
            continue
        result = convert_document(block.content)
        if result.degraded:
            logger.warning("tokens.estimate.fallback: block=%s", block.id)
            total += approximate_tokens(json.dumps(block.content))
        else:
            total += approximate_tokens(result.text)
    return total


def token_usage(blocks: Iterable[Block], model: Optional[str]) -> TokenUsage:
    return TokenUsage(used=estimate_tokens(blocks), max=context_length_for(model))


# 950 -> "950", 1500 -> "1.5K", 2000 -> "2K"
def format_token_count(num: int) -> str:
    if num >= 1000:
        label = f"{num / 1000:.1f}"
        if label.endswith(".0"):
            label = label[:-2]
        return f"{label}K"
    return str(num)

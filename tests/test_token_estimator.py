"""Tests for the advisory token estimate."""

import json
import math
from types import SimpleNamespace

import pytest

from Folio.services.ai.providers import DEFAULT_CONTEXT_LENGTH
from Folio.services.markdown.parser import markdown_to_document
from Folio.services.token_estimator import approximate_tokens, estimate_tokens, format_token_count, token_usage


def _block(text=None, content=None, is_excluded=False):
    if content is None and text is not None:
        content = markdown_to_document(text).to_json()
    return SimpleNamespace(id="b", content=content, is_excluded=is_excluded)


class TestApproximateTokens:
    @pytest.mark.parametrize("text,expected", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)])
    def test_four_characters_per_token(self, text, expected):
        assert approximate_tokens(text) == expected


class TestEstimateTokens:
    def test_sums_markdown_of_included_blocks(self):
        blocks = [_block("Hello **there**"), _block("abcd")]
        assert estimate_tokens(blocks) == math.ceil(len("Hello **there**") / 4) + 1

    def test_excluded_and_empty_blocks_are_ignored(self):
        blocks = [_block("x" * 40, is_excluded=True), _block(content=None), _block("abcd")]
        assert estimate_tokens(blocks) == 1

    def test_unconvertible_content_falls_back_to_json_length(self):
        broken = {"type": "doc", "content": [{"type": "table"}]}
        assert estimate_tokens([_block(content=broken)]) == math.ceil(len(json.dumps(broken)) / 4)


class TestTokenUsage:
    def test_max_comes_from_model_registry(self):
        usage = token_usage([_block("abcd")], "gemini-2.5-pro")
        assert usage.used == 1
        assert usage.max == 1_048_576
        assert usage.label == "1 / 1048.6K"

    def test_unknown_model_uses_default_window(self):
        assert token_usage([], "no-such-model").max == DEFAULT_CONTEXT_LENGTH
        assert token_usage([], None).max == DEFAULT_CONTEXT_LENGTH

    @pytest.mark.parametrize("num,label", [(0, "0"), (950, "950"), (1000, "1K"), (1500, "1.5K"), (2000, "2K"), (128_000, "128K")])
    def test_format_token_count(self, num, label):
        assert format_token_count(num) == label

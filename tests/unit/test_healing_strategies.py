# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for individual healing strategies."""

import json
from unittest.mock import AsyncMock

import pytest

from toolheal.config.settings import Settings
from toolheal.healing.correction import ChatResponse, ChatResponseStatus
from toolheal.healing.patterns import ModelBugPatternTable
from toolheal.healing.strategies import (
    LLMCorrectionStrategy,
    NewStringAdjustmentStrategy,
    PatternMatchingStrategy,
    UnescapeStrategy,
    default_strategies,
)
from toolheal.healing.types import HealingRequest, HealingStrategy, StringHealingParams
from toolheal.tools.base import ModelIdentity


def request(content, old, new, model=None, expected=None):
    return HealingRequest(
        file_content=content, params=StringHealingParams(old, new, expected), model=model
    )


@pytest.fixture
def patterns():
    return ModelBugPatternTable()


class TestUnescapeStrategy:
    """Tests for UnescapeStrategy."""

    @pytest.mark.asyncio
    async def test_applies_family_patterns_to_both_strings(self, patterns, flags):
        """Test old and new strings are unescaped."""
        strategy = UnescapeStrategy(patterns, flags)
        req = request("a\nb", "a\\nb", "c\\nd", ModelIdentity("gemini"))

        candidate = await strategy.propose(req)

        assert strategy.is_available(req) is True
        assert candidate.old_string == "a\nb"
        assert candidate.new_string == "c\nd"
        assert candidate.confidence == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_no_change_proposes_nothing(self, patterns, flags):
        """Test nothing is proposed when the patterns change nothing."""
        strategy = UnescapeStrategy(patterns, flags)

        assert await strategy.propose(request("x", "plain", "y", ModelIdentity("gemini"))) is None

    def test_unavailable_without_family(self, patterns, flags):
        """Test unknown families skip the strategy."""
        strategy = UnescapeStrategy(patterns, flags)

        assert strategy.is_available(request("x", "y", "z")) is False
        assert strategy.is_available(request("x", "y", "z", ModelIdentity("gpt", "gpt-4o"))) is False

    def test_family_fix_flag_disables(self, patterns, flags, runtime_resolver):
        """Test turning off a family fix removes its patterns."""
        runtime_resolver.set("gemini_unescape_fix", False)
        strategy = UnescapeStrategy(patterns, flags)

        assert strategy.is_available(request("x", "a\\nb", "z", ModelIdentity("gemini"))) is False

    def test_family_without_flag_is_always_on(self, patterns, flags):
        """Test deepseek fixes have no gating flag."""
        strategy = UnescapeStrategy(patterns, flags)

        assert strategy.is_available(request("x", "y", "z", ModelIdentity("deepseek"))) is True


class TestPatternMatchingStrategy:
    """Tests for PatternMatchingStrategy."""

    @pytest.mark.asyncio
    async def test_trailing_whitespace(self):
        """Test trailing blanks are trimmed from both strings."""
        candidate = await PatternMatchingStrategy().propose(
            request("value = 1\n", "value = 1   ", "value = 2  ")
        )

        assert candidate.old_string == "value = 1"
        assert candidate.new_string == "value = 2"
        assert candidate.confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_inner_whitespace_uses_file_segment(self):
        """Test the exact file segment replaces the model's spacing."""
        candidate = await PatternMatchingStrategy().propose(
            request("if (a  &&\n    b) {}", "if (a && b)", "if (a || b)")
        )

        assert candidate.old_string == "if (a  &&\n    b)"

    @pytest.mark.asyncio
    async def test_indentation_kept_when_old_is_indented(self):
        """Test an indented snippet maps to the indented file line."""
        candidate = await PatternMatchingStrategy().propose(
            request("def f():\n\treturn  1\n", "    return 1", "    return 2")
        )

        assert candidate.old_string == "\treturn  1"

    @pytest.mark.asyncio
    async def test_ambiguous_segments(self):
        """Test differing matches are not guessed between."""
        strategy = PatternMatchingStrategy()

        assert await strategy.propose(request("a b\na  b\n", "a   b", "c")) is None

    @pytest.mark.asyncio
    async def test_no_match(self):
        """Test absent tokens produce nothing."""
        assert await PatternMatchingStrategy().propose(request("abc", "xyz  ", "q")) is None


class TestLLMCorrectionStrategy:
    """Tests for LLMCorrectionStrategy."""

    def make(self, content, patterns, flags, settings=None):
        endpoint = AsyncMock()
        endpoint.make_chat_request.return_value = ChatResponse(
            ChatResponseStatus.SUCCESS, content=json.dumps(content)
        )
        strategy = LLMCorrectionStrategy(endpoint, patterns, flags, settings or Settings())
        return strategy, endpoint

    @pytest.mark.asyncio
    async def test_uses_corrected_strings(self, patterns, flags):
        """Test the endpoint's snippet and new string are proposed."""
        strategy, endpoint = self.make(
            {"corrected_target_snippet": "x = 1", "corrected_new_string": "x = 2", "confidence": 0.95},
            patterns,
            flags,
        )

        candidate = await strategy.propose(request("x = 1", "x=1", "x=2"))

        assert candidate.old_string == "x = 1"
        assert candidate.new_string == "x = 2"
        assert candidate.confidence == pytest.approx(0.95)
        assert strategy.uses_metacognition is True
        name, messages, schema, token = endpoint.make_chat_request.await_args.args
        assert name == "toolHealing"
        assert "x=1" in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_confidence_is_clamped_and_defaulted(self, patterns, flags):
        """Test out of range and missing confidence values."""
        strategy, _ = self.make(
            {"corrected_target_snippet": "x = 1", "confidence": 7}, patterns, flags
        )
        assert (await strategy.propose(request("x = 1", "x=1", "y"))).confidence == 1.0

        strategy, _ = self.make({"corrected_target_snippet": "x = 1"}, patterns, flags)
        assert (await strategy.propose(request("x = 1", "x=1", "y"))).confidence == 0.8

    @pytest.mark.asyncio
    async def test_new_string_falls_back_to_family_patterns(self, patterns, flags):
        """Test a missing corrected_new_string unescapes the original."""
        strategy, _ = self.make({"corrected_target_snippet": "a\nb"}, patterns, flags)

        candidate = await strategy.propose(
            request("a\nb", "a\\nb", "c\\nd", ModelIdentity("gemini"))
        )

        assert candidate.new_string == "c\nd"

    @pytest.mark.asyncio
    async def test_escaped_new_string_is_corrected_by_endpoint(self, patterns, flags):
        """Test a second request fixes an escaped replacement."""
        endpoint = AsyncMock()
        endpoint.make_chat_request.side_effect = [
            ChatResponse(
                ChatResponseStatus.SUCCESS,
                content=json.dumps({"corrected_target_snippet": "print('a')"}),
            ),
            ChatResponse(
                ChatResponseStatus.SUCCESS,
                content=json.dumps({"corrected_new_string": "print('b')\nprint('c')"}),
            ),
        ]
        strategy = LLMCorrectionStrategy(endpoint, patterns, flags, Settings())

        candidate = await strategy.propose(
            request("print('a')", "print(\\'a\\')", "print(\\'b\\')\\nprint(\\'c\\')")
        )

        assert candidate.old_string == "print('a')"
        assert candidate.new_string == "print('b')\nprint('c')"
        name, messages, schema, _ = endpoint.make_chat_request.await_args_list[1].args
        assert name == "newStringCorrection"
        assert schema["required"] == ["corrected_new_string"]

    @pytest.mark.asyncio
    async def test_plain_new_string_skips_second_request(self, patterns, flags):
        """Test an unescaped replacement is used without asking again."""
        strategy, endpoint = self.make({"corrected_target_snippet": "x = 1"}, patterns, flags)

        candidate = await strategy.propose(request("x = 1", "x=1", "x = 2"))

        assert candidate.new_string == "x = 2"
        assert endpoint.make_chat_request.await_count == 1

    @pytest.mark.asyncio
    async def test_new_string_request_failure_keeps_old_string_fix(self, patterns, flags):
        """Test a failing second request falls back to table unescaping."""
        endpoint = AsyncMock()
        endpoint.make_chat_request.side_effect = [
            ChatResponse(
                ChatResponseStatus.SUCCESS,
                content=json.dumps({"corrected_target_snippet": "a\nb"}),
            ),
            RuntimeError("connection reset"),
        ]
        strategy = LLMCorrectionStrategy(endpoint, patterns, flags, Settings())

        candidate = await strategy.propose(
            request("a\nb", "a\\nb", "c\\nd", ModelIdentity("gemini"))
        )

        assert candidate.old_string == "a\nb"
        assert candidate.new_string == "c\nd"

    @pytest.mark.asyncio
    async def test_non_json_reply(self, patterns, flags):
        """Test unparseable replies propose nothing."""
        endpoint = AsyncMock()
        endpoint.make_chat_request.return_value = ChatResponse(
            ChatResponseStatus.SUCCESS, content="I think it is x = 1"
        )
        strategy = LLMCorrectionStrategy(endpoint, patterns, flags, Settings())

        assert await strategy.propose(request("x = 1", "x=1", "y")) is None

    @pytest.mark.asyncio
    async def test_context_is_truncated(self, patterns, flags):
        """Test large files are windowed before being sent."""
        strategy, endpoint = self.make(
            {"corrected_target_snippet": "x"},
            patterns,
            flags,
            Settings(healing_context_max_chars=100),
        )

        await strategy.propose(request("a" * 1000 + "x=1" + "b" * 1000, "x=1", "y"))

        prompt = endpoint.make_chat_request.await_args.args[1][0]["content"]
        assert "a" * 500 not in prompt

    def test_availability(self, patterns, flags, runtime_resolver):
        """Test an endpoint and metacognition are both required."""
        req = request("x", "y", "z")

        assert LLMCorrectionStrategy(None, patterns, flags, Settings()).is_available(req) is False
        strategy = LLMCorrectionStrategy(AsyncMock(), patterns, flags, Settings())
        assert strategy.is_available(req) is True
        runtime_resolver.set("metacognition_enabled", False)
        flags.clear_cache()
        assert strategy.is_available(req) is False


class TestNewStringAdjustmentStrategy:
    """Tests for NewStringAdjustmentStrategy."""

    @pytest.mark.asyncio
    async def test_trims_both_strings(self):
        """Test leading and trailing whitespace is removed."""
        candidate = await NewStringAdjustmentStrategy().propose(
            request("abc", "\n  abc", "  xyz\n")
        )

        assert candidate.old_string == "abc"
        assert candidate.new_string == "xyz"
        assert candidate.confidence == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_nothing_to_trim(self):
        """Test already trimmed strings propose nothing."""
        assert await NewStringAdjustmentStrategy().propose(request("abc", "abc", "x")) is None


def test_default_strategy_order(patterns, flags):
    """Test strategies run unescape, pattern, llm, newstring."""
    strategies = default_strategies(patterns, flags, None, Settings())

    assert [s.strategy for s in strategies] == [
        HealingStrategy.UNESCAPE,
        HealingStrategy.PATTERN_MATCHING,
        HealingStrategy.LLM_CORRECTION,
        HealingStrategy.NEWSTRING_ADJUSTMENT,
    ]

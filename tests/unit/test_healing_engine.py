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

"""Tests for the healing engine state machine."""

import asyncio
import json
import logging
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from toolheal.core.cancellation import CancellationToken
from toolheal.core.errors import NoMatchError
from toolheal.feature_flags import FeatureFlagManager
from toolheal.healing.correction import ChatResponse, ChatResponseStatus
from toolheal.healing.engine import HealingEngine
from toolheal.healing.strategies import (
    HealingStrategyBase,
    PatternMatchingStrategy,
    UnescapeStrategy,
)
from toolheal.healing.types import (
    HealingRequest,
    HealingStrategy,
    StrategyCandidate,
    StringHealingParams,
)
from toolheal.tools.base import ModelIdentity

GEMINI = ModelIdentity(family="gemini", name="gemini-1.5-pro")
CLAUDE = ModelIdentity(family="claude", name="claude-3-sonnet")


def make_request(content, old, new, model=None, error=None, expected=None, token=None):
    return HealingRequest(
        file_content=content,
        params=StringHealingParams(old, new, expected),
        model=model,
        error=error,
        target_locator="test.txt",
        token=token,
    )


class FakeEndpoint:
    """Correction endpoint returning a canned response."""

    def __init__(self, response: ChatResponse):
        self.response = response
        self.calls = []

    async def make_chat_request(self, request_name, messages, schema=None, token=None):
        self.calls.append((request_name, messages, schema))
        return self.response


class RaisingStrategy(HealingStrategyBase):
    strategy = HealingStrategy.UNESCAPE

    async def propose(self, request):
        raise RuntimeError("strategy exploded")


class SlowStrategy(HealingStrategyBase):
    strategy = HealingStrategy.UNESCAPE

    async def propose(self, request):
        await asyncio.sleep(1)
        return None


class TrackingStrategy(HealingStrategyBase):
    """Records how many attempts are inside propose() at once."""

    strategy = HealingStrategy.UNESCAPE

    def __init__(self):
        self.active = 0
        self.max_active = 0

    async def propose(self, request) -> Optional[StrategyCandidate]:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.02)
        self.active -= 1
        return None


@pytest.fixture
def engine(flags, settings):
    return HealingEngine(flags=flags, settings=settings)


class TestConcreteScenarios:
    """Tests for the documented end-to-end healing scenarios."""

    @pytest.mark.asyncio
    async def test_gemini_over_escaping_heals_with_unescape(self, engine):
        """Test literal backslash sequences from gemini are unescaped."""
        request = make_request(
            "Hello\nWorld\tTest", "Hello\\nWorld\\tTest", "Goodbye\\nWorld", model=GEMINI
        )

        result = await engine.heal(request)

        assert result.success is True
        assert result.strategy == HealingStrategy.UNESCAPE
        assert result.healed_params.old_string == "Hello\nWorld\tTest"
        assert result.healed_params.new_string == "Goodbye\nWorld"
        assert result.confidence == pytest.approx(0.9)
        assert result.healing_applied is True

    @pytest.mark.asyncio
    async def test_trailing_spaces_heal_with_pattern_matching(self, engine):
        """Test trailing whitespace is fixed by pattern matching for any model."""
        request = make_request(
            "Text without trailing spaces",
            "Text without trailing spaces   ",
            "Text with new words",
        )

        result = await engine.heal(request)

        assert result.success is True
        assert result.strategy == HealingStrategy.PATTERN_MATCHING
        assert result.healed_params.old_string == "Text without trailing spaces"

    @pytest.mark.asyncio
    async def test_unfixable_input_returns_original_error(self, engine):
        """Test exhaustion preserves the original no-match message."""
        error = NoMatchError(
            "No match found for 'Non-existent text' in test.txt",
            search_string="Non-existent text",
            file_content="Different content",
        )
        request = make_request(
            "Different content", "Non-existent text", "Replacement", error=error
        )

        result = await engine.heal(request)

        assert result.success is False
        assert result.error == "No match found for 'Non-existent text' in test.txt"
        assert result.healed_params is None
        assert "pattern_matching" in result.attempted_strategies

    @pytest.mark.asyncio
    async def test_repeat_request_is_served_from_cache(self, engine):
        """Test an identical second request is a cache hit and adds no entry."""
        request = make_request(
            "Hello\nWorld\tTest", "Hello\\nWorld\\tTest", "Goodbye\\nWorld", model=GEMINI
        )
        size_before = len(engine.cache)

        first = await engine.heal(request)
        second = await engine.heal(request)

        assert first.cached is False
        assert second.cached is True
        assert second.healed_params == first.healed_params
        assert second.elapsed < 0.05
        assert len(engine.cache) == size_before + 1


class TestStrategyOrdering:
    """Tests for strict strategy order."""

    @pytest.mark.asyncio
    async def test_unescape_wins_when_pattern_matching_could_also_fix(self, engine):
        """Test unescape is reported when both strategies could succeed."""
        request = make_request(
            "result = a + b\n", "result = a  +  b", "result = a - b", model=CLAUDE
        )

        result = await engine.heal(request)

        assert result.success is True
        assert result.strategy == HealingStrategy.UNESCAPE
        assert result.attempted_strategies == ("unescape",)
        assert result.healed_params.old_string == "result = a + b"

    @pytest.mark.asyncio
    async def test_unknown_family_skips_unescape(self, engine):
        """Test unescape does not run without a known model family."""
        request = make_request("value = 1", "value = 1  ", "value = 2")

        result = await engine.heal(request)

        assert result.strategy == HealingStrategy.PATTERN_MATCHING
        assert "unescape" not in result.attempted_strategies


class TestUniqueness:
    """Tests for the exactly-once match rule."""

    @pytest.mark.asyncio
    async def test_three_occurrences_are_not_healed(self, engine):
        """Test an ambiguous target is never reported as healed."""
        request = make_request("foo\nfoo\nfoo\n", "foo  ", "bar")

        result = await engine.heal(request)

        assert result.success is False
        assert result.healed_params is None

    @pytest.mark.asyncio
    async def test_expected_count_allows_multiple_occurrences(self, engine):
        """Test expected_replacement_count permits a multi-match heal."""
        request = make_request("foo\nfoo\nfoo\n", "foo  ", "bar", expected=3)

        result = await engine.heal(request)

        assert result.success is True
        assert result.strategy == HealingStrategy.PATTERN_MATCHING
        assert result.healed_params.old_string == "foo"
        assert result.healed_params.expected_replacement_count == 3

    @pytest.mark.asyncio
    async def test_unescape_result_occurring_twice_is_rejected(self, engine):
        """Test unescape does not pick one of several matches."""
        request = make_request("a\nb\na\nb", "a\\nb", "c\\nd", model=GEMINI)

        result = await engine.heal(request)

        assert result.success is False

    @pytest.mark.asyncio
    async def test_noop_edit_is_rejected(self, engine):
        """Test a candidate whose old and new strings match is rejected."""
        request = make_request("foo bar", "foo  bar", "foo bar")

        result = await engine.heal(request)

        assert result.success is False


class TestAlreadyValid:
    """Tests for input that needs no healing."""

    @pytest.mark.asyncio
    async def test_valid_input_returns_none_strategy(self, engine):
        """Test a unique exact match returns strategy none without caching."""
        result = await engine.heal(make_request("abc def", "abc", "xyz"))

        assert result.success is True
        assert result.strategy == HealingStrategy.NONE
        assert result.healing_applied is False
        assert result.attempted_strategies == ()
        assert len(engine.cache) == 0


class TestLineEndings:
    """Tests for CRLF-aware matching."""

    @pytest.mark.asyncio
    async def test_healed_old_string_uses_file_line_endings(self, engine):
        """Test healed strings are converted to the file's EOL."""
        request = make_request(
            "line one\r\nline two\r\n", "line one\nline two  ", "line one\nline 2"
        )

        result = await engine.heal(request)

        assert result.success is True
        assert result.healed_params.old_string == "line one\r\nline two"
        assert result.healed_params.new_string == "line one\r\nline 2"


class TestCache:
    """Tests for cache interaction."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_strategy_code(self, engine):
        """Test the second identical request does not run strategies."""
        unescape = engine.strategies[0]
        assert isinstance(unescape, UnescapeStrategy)
        spy = AsyncMock(wraps=unescape.propose)
        unescape.propose = spy
        request = make_request(
            "Hello\nWorld\tTest", "Hello\\nWorld\\tTest", "Goodbye\\nWorld", model=GEMINI
        )

        first = await engine.heal(request)
        second = await engine.heal(request)

        assert spy.await_count == 1
        assert first.healed_params == second.healed_params

    @pytest.mark.asyncio
    async def test_new_string_whitespace_is_not_shared_between_entries(self, engine):
        """Test replacements differing in inner spaces each keep their own text."""
        content = 'msg = "hello"'
        old = 'msg = \\"hello\\"'

        first = await engine.heal(make_request(content, old, 'msg = \\"a    b\\"', model=GEMINI))
        second = await engine.heal(make_request(content, old, 'msg = \\"a b\\"', model=GEMINI))

        assert first.healed_params.new_string == 'msg = "a    b"'
        assert second.cached is False
        assert second.healed_params.new_string == 'msg = "a b"'

    @pytest.mark.asyncio
    async def test_stale_cache_entry_is_recomputed(self, engine):
        """Test a cached healing that no longer matches the file is not reused."""
        old, new = "Hello\\nWorld", "Bye\\nWorld"
        await engine.heal(make_request("Hello\nWorld", old, new, model=GEMINI))

        result = await engine.heal(make_request("Something else", old, new, model=GEMINI))

        assert result.cached is False
        assert result.success is False

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, engine):
        """Test failed attempts leave the cache empty."""
        await engine.heal(make_request("Different content", "Non-existent text", "x"))

        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_cache_disabled_flag(self, engine, runtime_resolver):
        """Test nothing is cached when the cache flag is off."""
        runtime_resolver.set("healing_cache_enabled", False)
        request = make_request("value = 1", "value = 1  ", "value = 2")

        await engine.heal(request)
        second = await engine.heal(request)

        assert second.cached is False
        assert len(engine.cache) == 0


class TestDisabled:
    """Tests for the disabled short circuit."""

    @pytest.mark.asyncio
    async def test_disabled_healing_runs_no_strategies(self, settings):
        """Test disabled healing fails immediately without strategies."""
        engine = HealingEngine(flags=FeatureFlagManager.disabled(settings=settings), settings=settings)
        spy = AsyncMock(wraps=engine.strategies[0].propose)
        engine.strategies[0].propose = spy
        error = NoMatchError("No match found for 'x'", search_string="x")

        result = await engine.heal(
            make_request("Hello\nWorld", "Hello\\nWorld", "Bye", model=GEMINI, error=error)
        )

        assert result.success is False
        assert result.attempted_strategies == ()
        assert result.metacognition_used is False
        assert result.error == "No match found for 'x'"
        assert spy.await_count == 0
        assert engine.metrics.snapshot()["total_attempts"] == 0

    @pytest.mark.asyncio
    async def test_master_switch_disables_string_healing(self, engine, runtime_resolver):
        """Test turning off healing_enabled disables dependent string healing."""
        runtime_resolver.set("healing_enabled", False)

        result = await engine.heal(make_request("value = 1", "value = 1  ", "value = 2"))

        assert result.success is False
        assert result.attempted_strategies == ()


class TestStrategyFailures:
    """Tests for strategy errors and timeouts."""

    @pytest.mark.asyncio
    async def test_strategy_exception_is_logged_and_skipped(self, flags, settings, caplog):
        """Test one failing strategy does not abort the attempt."""
        engine = HealingEngine(
            flags=flags,
            settings=settings,
            strategies=[RaisingStrategy(), PatternMatchingStrategy()],
        )

        with caplog.at_level(logging.WARNING, logger="toolheal"):
            result = await engine.heal(make_request("value = 1", "value = 1  ", "value = 2"))

        assert result.success is True
        assert result.strategy == HealingStrategy.PATTERN_MATCHING
        assert "strategy exploded" in caplog.text

    @pytest.mark.asyncio
    async def test_strategy_timeout_moves_to_next_strategy(
        self, flags, settings, runtime_resolver
    ):
        """Test a strategy exceeding its timeout counts as failed."""
        runtime_resolver.set_policy("strategy_timeout_unescape", 0.01)
        engine = HealingEngine(
            flags=flags,
            settings=settings,
            strategies=[SlowStrategy(), PatternMatchingStrategy()],
        )

        result = await engine.heal(make_request("value = 1", "value = 1  ", "value = 2"))

        assert result.success is True
        assert result.attempted_strategies == ("unescape", "pattern_matching")

    @pytest.mark.asyncio
    async def test_attempt_timeout_fails_with_original_error(
        self, flags, settings, runtime_resolver
    ):
        """Test the overall attempt timeout ends the attempt as failed."""
        runtime_resolver.set_policy("string_replace_healing_timeout", 0.05)
        engine = HealingEngine(flags=flags, settings=settings, strategies=[SlowStrategy()])
        error = NoMatchError("No match found for 'value'")

        result = await engine.heal(
            make_request("value = 1", "value = 1  ", "value = 2", error=error)
        )

        assert result.success is False
        assert result.error == "No match found for 'value'"
        assert result.attempted_strategies == ("unescape",)

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_strategies(self, engine):
        """Test a cancelled token stops the attempt before strategies run."""
        token = CancellationToken()
        token.cancel("user")

        result = await engine.heal(
            make_request("value = 1", "value = 1  ", "value = 2", token=token)
        )

        assert result.success is False
        assert result.attempted_strategies == ()


class TestConcurrency:
    """Tests for the healing concurrency limit."""

    @pytest.mark.asyncio
    async def test_attempts_beyond_limit_queue(self, flags, settings, runtime_resolver):
        """Test at most healing_concurrent_limit attempts run at once."""
        runtime_resolver.set_policy("healing_concurrent_limit", 1)
        tracker = TrackingStrategy()
        engine = HealingEngine(flags=flags, settings=settings, strategies=[tracker])

        results = await asyncio.gather(
            *(engine.heal(make_request("abc", f"missing {i}", "x")) for i in range(3))
        )

        assert tracker.max_active == 1
        assert len(results) == 3
        assert all(r.success is False for r in results)

    @pytest.mark.asyncio
    async def test_limit_of_two_allows_parallel_attempts(
        self, flags, settings, runtime_resolver
    ):
        """Test a higher limit lets attempts overlap."""
        runtime_resolver.set_policy("healing_concurrent_limit", 2)
        tracker = TrackingStrategy()
        engine = HealingEngine(flags=flags, settings=settings, strategies=[tracker])

        await asyncio.gather(
            *(engine.heal(make_request("abc", f"missing {i}", "x")) for i in range(4))
        )

        assert tracker.max_active == 2


class TestLLMCorrection:
    """Tests for the correction endpoint strategy inside the engine."""

    CONTENT = "def greet(name):\n    return f'Hello {name}'\n"

    @pytest.mark.asyncio
    async def test_endpoint_correction_is_accepted(self, flags, settings):
        """Test a valid corrected snippet heals the request."""
        endpoint = FakeEndpoint(
            ChatResponse(
                ChatResponseStatus.SUCCESS,
                content=json.dumps({"corrected_target_snippet": "def greet(name):", "confidence": 0.95}),
            )
        )
        engine = HealingEngine(flags=flags, settings=settings, endpoint=endpoint)

        result = await engine.heal(
            make_request(self.CONTENT, "def greet(person):", "def greet(user):")
        )

        assert result.success is True
        assert result.strategy == HealingStrategy.LLM_CORRECTION
        assert result.metacognition_used is True
        assert result.confidence == pytest.approx(0.95)
        assert result.healed_params.old_string == "def greet(name):"
        assert result.healed_params.new_string == "def greet(user):"
        assert len(endpoint.calls) == 1

    @pytest.mark.asyncio
    async def test_endpoint_error_is_treated_as_no_correction(self, flags, settings):
        """Test a failed endpoint call falls through to exhaustion."""
        endpoint = FakeEndpoint(ChatResponse(ChatResponseStatus.RATE_LIMIT, error="slow down"))
        engine = HealingEngine(flags=flags, settings=settings, endpoint=endpoint)

        result = await engine.heal(
            make_request(self.CONTENT, "def greet(person):", "def greet(user):")
        )

        assert result.success is False
        assert result.metacognition_used is True
        assert "llm_correction" in result.attempted_strategies

    @pytest.mark.asyncio
    async def test_metacognition_flag_off_skips_endpoint(self, flags, settings, runtime_resolver):
        """Test the endpoint is not consulted with metacognition disabled."""
        runtime_resolver.set("metacognition_enabled", False)
        endpoint = FakeEndpoint(ChatResponse(ChatResponseStatus.SUCCESS, content="{}"))
        engine = HealingEngine(flags=flags, settings=settings, endpoint=endpoint)

        result = await engine.heal(
            make_request(self.CONTENT, "def greet(person):", "def greet(user):")
        )

        assert result.success is False
        assert result.metacognition_used is False
        assert endpoint.calls == []


class TestMetrics:
    """Tests for metrics recorded by the engine."""

    @pytest.mark.asyncio
    async def test_attempts_and_cache_hits_are_counted(self, engine):
        """Test every attempt is counted, including cache hits."""
        request = make_request(
            "Hello\nWorld\tTest", "Hello\\nWorld\\tTest", "Goodbye\\nWorld", model=GEMINI
        )
        await engine.heal(request)
        await engine.heal(request)
        await engine.heal(make_request("Different content", "Non-existent text", "x"))

        snapshot = engine.metrics.snapshot()
        assert snapshot["total_attempts"] == 3
        assert snapshot["successful_healings"] == 2
        assert snapshot["failed_healings"] == 1
        assert snapshot["cache_hits"] == 1
        assert snapshot["healings_by_model"]["gemini"]["attempts"] == 2
        assert snapshot["healing_method_stats"]["unescape"]["successes"] == 2

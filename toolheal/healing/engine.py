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

"""Healing engine for string replace no-match failures.

Each attempt walks a fixed state machine and stops at the first accepted
candidate:

    Disabled -> CacheCheck -> Unescape -> PatternMatch -> LLMCorrection
             -> NewStringAdjustment -> Exhausted

A candidate is accepted only when its old string occurs exactly the
allowed number of times in the file and differs from its new string.
Strategy errors and timeouts are logged and the engine moves on; when
every strategy is exhausted the original tool error message is returned.

Example:
    engine = HealingEngine(flags=FeatureFlagManager.production())
    result = await engine.heal(
        HealingRequest(file_content=text, params=StringHealingParams(old, new))
    )
    if result.success:
        old, new = result.healed_params.old_string, result.healed_params.new_string
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from toolheal.config.settings import Settings
from toolheal.feature_flags.manager import FeatureFlagManager
from toolheal.healing.cache import HealingCache
from toolheal.healing.concurrency import ConcurrencyLimiter
from toolheal.healing.correction import CorrectionEndpoint, OpenAICompatibleEndpoint
from toolheal.healing.metrics import HealingMetrics
from toolheal.healing.patterns import ModelBugPatternTable
from toolheal.healing.strategies import HealingStrategyBase, default_strategies
from toolheal.healing.types import (
    HealingRequest,
    HealingResult,
    HealingStrategy,
    StrategyCandidate,
    StringHealingParams,
)
from toolheal.healing.utils import detect_line_ending, match_and_count, normalize_line_endings

logger = logging.getLogger(__name__)


@dataclass
class _AttemptState:
    """Progress of one attempt, kept outside the timed coroutine."""

    attempted: List[str] = field(default_factory=list)
    metacognition_used: bool = False


class HealingEngine:
    """Runs ordered repair strategies against a failed string replace."""

    def __init__(
        self,
        flags: Optional[FeatureFlagManager] = None,
        cache: Optional[HealingCache] = None,
        metrics: Optional[HealingMetrics] = None,
        patterns: Optional[ModelBugPatternTable] = None,
        endpoint: Optional[CorrectionEndpoint] = None,
        settings: Optional[Settings] = None,
        strategies: Optional[List[HealingStrategyBase]] = None,
        limiter: Optional[ConcurrencyLimiter] = None,
    ):
        """Initialize the engine.

        Args:
            flags: Flag and policy source (default resolver chain if None)
            cache: Cache of successful healings
            metrics: Counters shared with the integration layer
            patterns: Model-family bug table
            endpoint: Correction endpoint (built from settings if None)
            settings: Settings for cache size, context size and endpoint
            strategies: Strategy list in execution order (defaults if None)
            limiter: Concurrency bound shared with patch healing
        """
        self.settings = settings or Settings()
        self.flags = flags or FeatureFlagManager(settings=self.settings)
        self.cache = cache or HealingCache(max_size=self.settings.healing_cache_max_size)
        self.metrics = metrics or HealingMetrics()
        self.patterns = patterns or ModelBugPatternTable()
        self.endpoint = endpoint or OpenAICompatibleEndpoint.from_settings(self.settings)
        self.strategies = (
            strategies
            if strategies is not None
            else default_strategies(self.patterns, self.flags, self.endpoint, self.settings)
        )
        self.limiter = limiter or ConcurrencyLimiter(self.flags)

    def is_enabled(self) -> bool:
        return self.flags.is_enabled("string_replace_healing_enabled")

    async def heal(self, request: HealingRequest) -> HealingResult:
        """Attempt to repair the request's parameters.

        Never raises for strategy or endpoint problems; the result carries
        the original error message on failure.
        """
        start = time.monotonic()
        if not self.is_enabled():
            logger.info("String replace healing disabled; returning original error")
            return HealingResult.failure(request.original_error_message)

        state = _AttemptState()
        timeout = float(self.flags.get_policy("string_replace_healing_timeout"))
        async with self.limiter.get():
            try:
                result = await asyncio.wait_for(self._run(request, state, start), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Healing attempt timed out after %.1fs", timeout)
                result = self._failure(request, state, start)

        self.metrics.record(
            request.family,
            result,
            record_time=self.flags.is_enabled("healing_performance_metrics"),
        )
        return result

    async def _run(
        self, request: HealingRequest, state: _AttemptState, start: float
    ) -> HealingResult:
        params = request.params
        family = request.family
        use_cache = self.flags.is_enabled("healing_cache_enabled")

        if use_cache:
            cached = self.cache.get(family, params.old_string, params.new_string)
            if cached is not None and self._still_matches(request, cached):
                logger.debug("Healing cache hit for model family %s", family)
                return cached.as_cached(time.monotonic() - start)
            if cached is not None:
                logger.debug("Cached healing no longer matches the file; recomputing")

        if match_and_count(request.file_content, params.old_string) == params.allowed_occurrences:
            return HealingResult(
                success=True,
                strategy=HealingStrategy.NONE,
                healed_params=params,
                confidence=1.0,
                elapsed=time.monotonic() - start,
            )

        detailed = self.flags.is_enabled("healing_detailed_telemetry")
        for strategy in self.strategies:
            if request.token is not None and request.token.is_cancellation_requested:
                logger.info("Healing cancelled: %s", request.token.reason)
                break
            if not strategy.is_available(request):
                continue

            state.attempted.append(strategy.name)
            if strategy.uses_metacognition:
                state.metacognition_used = True

            candidate = await self._propose(strategy, request)
            healed = self._accept(request, candidate)
            if detailed:
                logger.debug(
                    "Strategy %s: candidate=%s accepted=%s",
                    strategy.name,
                    candidate is not None,
                    healed is not None,
                )
            if healed is None or candidate is None:
                continue

            result = HealingResult(
                success=True,
                strategy=strategy.strategy,
                healed_params=healed,
                confidence=candidate.confidence,
                elapsed=time.monotonic() - start,
                healing_applied=True,
                metacognition_used=state.metacognition_used,
                attempted_strategies=tuple(state.attempted),
            )
            logger.info(
                "Healed string replace for %s using %s (confidence %.2f)",
                request.target_locator or "document",
                strategy.name,
                candidate.confidence,
            )
            if use_cache:
                self.cache.put(family, params.old_string, params.new_string, result)
            return result

        logger.info(
            "Healing exhausted for %s after %s",
            request.target_locator or "document",
            ", ".join(state.attempted) or "no strategies",
        )
        return self._failure(request, state, start)

    async def _propose(
        self, strategy: HealingStrategyBase, request: HealingRequest
    ) -> Optional[StrategyCandidate]:
        timeout = float(self.flags.get_policy(f"strategy_timeout_{strategy.name}"))
        try:
            return await asyncio.wait_for(strategy.propose(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Strategy %s timed out after %.1fs", strategy.name, timeout)
        except Exception as e:
            logger.warning("Strategy %s failed: %s", strategy.name, e, exc_info=True)
        return None

    def _accept(
        self, request: HealingRequest, candidate: Optional[StrategyCandidate]
    ) -> Optional[StringHealingParams]:
        """Healed parameters if the candidate is an unambiguous, real edit."""
        if candidate is None or not candidate.old_string:
            return None
        content = request.file_content
        allowed = request.params.allowed_occurrences
        occurrences = match_and_count(content, candidate.old_string)
        if occurrences != allowed:
            logger.debug("Rejected candidate: %d occurrences, expected %d", occurrences, allowed)
            return None

        eol = detect_line_ending(content)
        old = normalize_line_endings(candidate.old_string, eol)
        new = normalize_line_endings(candidate.new_string, eol)
        if old == new:
            logger.debug("Rejected candidate: no-op edit")
            return None
        return request.params.with_strings(old, new)

    @staticmethod
    def _still_matches(request: HealingRequest, cached: HealingResult) -> bool:
        healed = cached.healed_params
        if healed is None:
            return False
        occurrences = match_and_count(request.file_content, healed.old_string)
        return occurrences == request.params.allowed_occurrences

    def _failure(
        self, request: HealingRequest, state: _AttemptState, start: float
    ) -> HealingResult:
        return HealingResult.failure(
            request.original_error_message,
            elapsed=time.monotonic() - start,
            metacognition_used=state.metacognition_used,
            attempted_strategies=tuple(state.attempted),
        )

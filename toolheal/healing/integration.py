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

"""Healing integration surface.

Wires the engine, cache, metrics, flags and patch healer together and
exposes the calls the invocation layer needs: heal a string replace, heal
a patch, invoke a tool with one healed retry, and report on all of it.

Example:
    integration = HealingIntegration(flags=FeatureFlagManager.production())
    result = await integration.invoke_with_healing(executor, "edit_file", params, context)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from toolheal.agent.error_classifier import ToolErrorClassifier, get_error_classifier
from toolheal.config.logging import sanitize_parameters
from toolheal.config.settings import Settings
from toolheal.core.cancellation import CancellationToken
from toolheal.core.errors import HealedError, NoMatchError
from toolheal.feature_flags.manager import FeatureFlagManager
from toolheal.healing.cache import HealingCache
from toolheal.healing.correction import CorrectionEndpoint, OpenAICompatibleEndpoint
from toolheal.healing.engine import HealingEngine
from toolheal.healing.metrics import HealingMetrics
from toolheal.healing.patch import PatchApplyError, PatchApplyResult, PatchHealer
from toolheal.healing.patterns import ModelBugPatternTable
from toolheal.healing.types import (
    HealingRequest,
    HealingResult,
    HealingStrategy,
    StringHealingParams,
)
from toolheal.tools.base import InvocationContext, ModelIdentity, ToolResult

if TYPE_CHECKING:
    from toolheal.agent.tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

# Health thresholds
DEGRADED_SUCCESS_RATE = 0.3
UNHEALTHY_SUCCESS_RATE = 0.1
SLOW_AVERAGE_SECONDS = 10.0
LOW_METACOGNITION_RATE = 0.5
METACOGNITION_MIN_ATTEMPTS = 5
TOP_METHODS = 5


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealingIntegration:
    """Facade over string and patch healing."""

    def __init__(
        self,
        flags: Optional[FeatureFlagManager] = None,
        settings: Optional[Settings] = None,
        endpoint: Optional[CorrectionEndpoint] = None,
        cache: Optional[HealingCache] = None,
        metrics: Optional[HealingMetrics] = None,
        patterns: Optional[ModelBugPatternTable] = None,
        engine: Optional[HealingEngine] = None,
        classifier: Optional[ToolErrorClassifier] = None,
    ):
        self.settings = settings or Settings()
        self.flags = flags or FeatureFlagManager(settings=self.settings)
        self.endpoint = endpoint or OpenAICompatibleEndpoint.from_settings(self.settings)
        self.cache = cache or HealingCache(max_size=self.settings.healing_cache_max_size)
        self.metrics = metrics or HealingMetrics()
        self.patterns = patterns or ModelBugPatternTable()
        self.engine = engine or HealingEngine(
            flags=self.flags,
            cache=self.cache,
            metrics=self.metrics,
            patterns=self.patterns,
            endpoint=self.endpoint,
            settings=self.settings,
        )
        self.patch_healer = PatchHealer(
            self.endpoint, self.flags, metrics=self.metrics, limiter=self.engine.limiter
        )
        self.classifier = classifier or get_error_classifier()

    # ------------------------------------------------------------------
    # Healing
    # ------------------------------------------------------------------

    def is_healing_enabled(self, kind: str = "string") -> bool:
        """Whether healing of ``kind`` ("string" or "patch") is on."""
        if kind == "patch":
            return self.flags.is_enabled("patch_healing_enabled")
        return self.flags.is_enabled("string_replace_healing_enabled")

    async def heal_string(
        self,
        target_locator: Optional[str],
        old_string: str,
        new_string: str,
        file_content: str,
        model_identity: Optional[ModelIdentity] = None,
        expected_replacement_count: Optional[int] = None,
        error: Optional[BaseException] = None,
        token: Optional[CancellationToken] = None,
    ) -> HealingResult:
        request = HealingRequest(
            file_content=file_content,
            params=StringHealingParams(old_string, new_string, expected_replacement_count),
            model=model_identity,
            error=error,
            target_locator=target_locator,
            token=token,
        )
        return await self.engine.heal(request)

    async def heal_patch(
        self,
        patch: str,
        doc_text: str,
        explanation: str = "",
        token: Optional[CancellationToken] = None,
        model_identity: Optional[ModelIdentity] = None,
    ) -> PatchApplyResult:
        return await self.patch_healer.apply_with_healing(
            patch, doc_text, explanation, token, model=model_identity
        )

    async def invoke_with_healing(
        self,
        executor: "ToolExecutor",
        name: str,
        input: Any,
        context: Optional[InvocationContext] = None,
        token: Optional[CancellationToken] = None,
    ) -> ToolResult:
        """Invoke a tool and retry with healed parameters.

        Only NO_MATCH failures of string replace and patch apply tools are
        healed. String replace calls are healed and retried up to the
        ``string_replace_healing_max_attempts`` policy, each time from the
        latest failing parameters. Patch apply calls are retried once with
        the healed patch. Any other outcome, including failed retries,
        returns the first result unchanged.
        """
        result = await executor.invoke(name, input, context, token)
        if result.success:
            return result

        descriptor = executor.tools.get(name)
        tool_type = descriptor.tool_type if descriptor else None
        if not self.classifier.is_healable(result.kind, tool_type) or not isinstance(input, dict):
            return result
        if tool_type == "patch_apply":
            return await self._retry_patch(executor, name, input, result, context, token)
        return await self._retry_string_replace(executor, name, input, result, context, token)

    @staticmethod
    def _file_content(input: Dict[str, Any], result: ToolResult) -> Optional[str]:
        file_content = input.get("file_content")
        if file_content is None and isinstance(result.error, NoMatchError):
            file_content = result.error.file_content
        return file_content if isinstance(file_content, str) else None

    async def _retry_string_replace(
        self,
        executor: "ToolExecutor",
        name: str,
        input: Dict[str, Any],
        result: ToolResult,
        context: Optional[InvocationContext],
        token: Optional[CancellationToken],
    ) -> ToolResult:
        max_attempts = max(1, int(self.flags.get_policy("string_replace_healing_max_attempts")))
        current_input, current = input, result
        for attempt in range(1, max_attempts + 1):
            if not isinstance(current_input.get("old_string"), str):
                break
            file_content = self._file_content(current_input, current)
            if file_content is None:
                logger.debug("No file content available to heal %s", name)
                break

            logger.debug("Healing %s with %s", name, sanitize_parameters(current_input))
            healing = await self.heal_string(
                current_input.get("path") or current_input.get("file_path") or name,
                current_input["old_string"],
                current_input.get("new_string", ""),
                file_content,
                model_identity=context.model if context else None,
                expected_replacement_count=current_input.get("expected_replacement_count"),
                error=current.error,
                token=token,
            )
            if not healing.success or not healing.healing_applied or healing.healed_params is None:
                break

            retry_input = dict(current_input)
            retry_input["old_string"] = healing.healed_params.old_string
            retry_input["new_string"] = healing.healed_params.new_string
            retried = await executor.invoke(name, retry_input, context, token)
            if retried.success:
                retried.healed_by = healing.strategy.value
                return retried
            logger.info(
                "Healed retry %d/%d of %s failed: %s", attempt, max_attempts, name, retried.text
            )
            if not self.classifier.is_healable(retried.kind, "string_replace"):
                break
            current_input, current = retry_input, retried
        return result

    async def _retry_patch(
        self,
        executor: "ToolExecutor",
        name: str,
        input: Dict[str, Any],
        result: ToolResult,
        context: Optional[InvocationContext],
        token: Optional[CancellationToken],
    ) -> ToolResult:
        patch = input.get("patch")
        doc_text = self._file_content(input, result)
        if not isinstance(patch, str) or doc_text is None:
            logger.debug("No patch or file content available to heal %s", name)
            return result

        try:
            healed = await self.heal_patch(
                patch,
                doc_text,
                str(input.get("explanation") or ""),
                token,
                model_identity=context.model if context else None,
            )
        except (PatchApplyError, HealedError) as e:
            logger.info("Patch healing for %s failed: %s", name, e)
            return result
        if not healed.was_healed or healed.healed_patch is None:
            return result

        retry_input = dict(input)
        retry_input["patch"] = healed.healed_patch
        retried = await executor.invoke(name, retry_input, context, token)
        if not retried.success:
            logger.info("Healed patch retry of %s failed: %s", name, retried.text)
            return result
        retried.healed_by = HealingStrategy.LLM_CORRECTION.value
        return retried

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        return dict(self.metrics.snapshot())

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def reset_metrics(self) -> None:
        self.metrics.reset()

    def get_model_bug_patterns(self, family: str) -> List[Dict[str, str]]:
        return [
            {"name": p.name, "pattern": p.pattern.pattern, "description": p.description}
            for p in self.patterns.patterns_for(family)
        ]

    def get_flags_summary(self) -> Dict[str, Any]:
        return {
            "flags": self.flags.get_all_flags(),
            "policy": self.flags.get_all_policy(),
            "correction_endpoint_configured": self.endpoint is not None,
        }

    def health_check(self) -> Dict[str, Any]:
        """Judge healing health from the current counters."""
        metrics = self.metrics.snapshot()
        total = metrics["total_attempts"]
        success_rate = metrics["successful_healings"] / total if total else 1.0
        issues: List[str] = []
        status = HealthStatus.HEALTHY

        if total > 0 and success_rate < UNHEALTHY_SUCCESS_RATE:
            status = HealthStatus.UNHEALTHY
            issues.append(f"Very low healing success rate: {success_rate:.1%}")
        elif total > 0 and success_rate < DEGRADED_SUCCESS_RATE:
            status = HealthStatus.DEGRADED
            issues.append(f"Low healing success rate: {success_rate:.1%}")

        if metrics["average_healing_time"] > SLOW_AVERAGE_SECONDS:
            if status is HealthStatus.HEALTHY:
                status = HealthStatus.DEGRADED
            issues.append(f"Slow healing: {metrics['average_healing_time']:.2f}s average")

        if (
            self.flags.is_enabled("metacognition_enabled")
            and total > METACOGNITION_MIN_ATTEMPTS
            and metrics["metacognition_usage_rate"] < LOW_METACOGNITION_RATE
        ):
            if status is HealthStatus.HEALTHY:
                status = HealthStatus.DEGRADED
            issues.append(
                f"Low metacognition usage: {metrics['metacognition_usage_rate']:.1%}"
            )

        return {
            "status": status.value,
            "issues": issues,
            "success_rate": success_rate,
            "total_attempts": total,
        }

    def generate_report(self) -> Dict[str, Any]:
        metrics = self.metrics.snapshot()
        total = metrics["total_attempts"]

        model_breakdown = {}
        for family, stats in metrics["healings_by_model"].items():
            attempts = stats["attempts"]
            model_breakdown[family] = {
                "attempts": attempts,
                "successes": stats["successes"],
                "success_rate": stats["successes"] / attempts if attempts else 0.0,
                "average_time": stats["total_time"] / attempts if attempts else 0.0,
            }

        methods = sorted(
            metrics["healing_method_stats"].items(), key=lambda kv: kv[1]["uses"], reverse=True
        )
        top_methods = [
            {
                "method": name,
                "uses": stats["uses"],
                "successes": stats["successes"],
                "success_rate": stats["successes"] / stats["uses"] if stats["uses"] else 0.0,
            }
            for name, stats in methods[:TOP_METHODS]
        ]

        return {
            "summary": {
                "total_attempts": total,
                "successful_healings": metrics["successful_healings"],
                "failed_healings": metrics["failed_healings"],
                "success_rate": metrics["successful_healings"] / total if total else 0.0,
                "average_healing_time": metrics["average_healing_time"],
                "metacognition_usage_rate": metrics["metacognition_usage_rate"],
            },
            "model_breakdown": model_breakdown,
            "top_methods": top_methods,
            "cache_performance": self.cache.get_stats(),
            "health": self.health_check(),
        }

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

"""Value types for healing attempts.

Requests and results are immutable: a result is built once per attempt,
folded into cache and metrics, then discarded.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from toolheal.core.cancellation import CancellationToken
from toolheal.tools.base import ModelIdentity


class HealingStrategy(str, Enum):
    """Repair technique that produced a healing result."""

    NONE = "none"
    UNESCAPE = "unescape"
    PATTERN_MATCHING = "pattern_matching"
    LLM_CORRECTION = "llm_correction"
    NEWSTRING_ADJUSTMENT = "newstring_adjustment"


@dataclass(frozen=True)
class StringHealingParams:
    """Parameters of a string replace call."""

    old_string: str
    new_string: str
    expected_replacement_count: Optional[int] = None

    @property
    def allowed_occurrences(self) -> int:
        """How many times old_string must occur for the edit to be unambiguous."""
        return self.expected_replacement_count or 1

    def with_strings(self, old_string: str, new_string: str) -> "StringHealingParams":
        return replace(self, old_string=old_string, new_string=new_string)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"old_string": self.old_string, "new_string": self.new_string}
        if self.expected_replacement_count is not None:
            data["expected_replacement_count"] = self.expected_replacement_count
        return data


@dataclass(frozen=True)
class HealingRequest:
    """Input to one healing attempt."""

    file_content: str
    params: StringHealingParams
    model: Optional[ModelIdentity] = None
    error: Optional[BaseException] = None
    target_locator: Optional[str] = None
    token: Optional[CancellationToken] = field(default=None, compare=False)

    @property
    def family(self) -> str:
        return self.model.family.lower() if self.model else "unknown"

    @property
    def original_error_message(self) -> str:
        if self.error is not None:
            return str(self.error)
        return f"No match found for target text in {self.target_locator or 'document'}"


@dataclass(frozen=True)
class HealingResult:
    """Outcome of one healing attempt."""

    success: bool
    strategy: HealingStrategy = HealingStrategy.NONE
    healed_params: Optional[StringHealingParams] = None
    confidence: float = 0.0
    elapsed: float = 0.0
    healing_applied: bool = False
    metacognition_used: bool = False
    cached: bool = False
    error: Optional[str] = None
    attempted_strategies: Tuple[str, ...] = ()

    @classmethod
    def failure(
        cls,
        error: Optional[str],
        elapsed: float = 0.0,
        metacognition_used: bool = False,
        attempted_strategies: Tuple[str, ...] = (),
    ) -> "HealingResult":
        return cls(
            success=False,
            error=error,
            elapsed=elapsed,
            metacognition_used=metacognition_used,
            attempted_strategies=attempted_strategies,
        )

    def as_cached(self, elapsed: float) -> "HealingResult":
        """Copy served from the cache."""
        return replace(
            self, cached=True, elapsed=elapsed, metacognition_used=False, attempted_strategies=()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "strategy": self.strategy.value,
            "healed_params": self.healed_params.to_dict() if self.healed_params else None,
            "confidence": self.confidence,
            "elapsed": self.elapsed,
            "healing_applied": self.healing_applied,
            "metacognition_used": self.metacognition_used,
            "cached": self.cached,
            "error": self.error,
            "attempted_strategies": list(self.attempted_strategies),
        }


@dataclass(frozen=True)
class StrategyCandidate:
    """Parameters proposed by a strategy, before the engine accepts them."""

    old_string: str
    new_string: str
    confidence: float

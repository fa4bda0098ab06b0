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

"""Self-healing string replace and patch repair.

Example:
    from toolheal.healing import HealingIntegration

    integration = HealingIntegration()
    result = await integration.heal_string("app.py", old, new, content)
"""

from toolheal.healing.cache import HealingCache
from toolheal.healing.correction import (
    ChatResponse,
    ChatResponseStatus,
    CorrectionEndpoint,
    OpenAICompatibleEndpoint,
    parse_json_response,
)
from toolheal.healing.engine import HealingEngine
from toolheal.healing.integration import HealingIntegration, HealthStatus
from toolheal.healing.metrics import HealingMetrics
from toolheal.healing.patch import (
    FilePatch,
    PatchApplyError,
    PatchApplyResult,
    PatchHealer,
    analyze_patch_issues,
    apply_patch,
    parse_unified_diff,
)
from toolheal.healing.patterns import ModelBugPattern, ModelBugPatternTable
from toolheal.healing.strategies import (
    HealingStrategyBase,
    LLMCorrectionStrategy,
    NewStringAdjustmentStrategy,
    PatternMatchingStrategy,
    UnescapeStrategy,
)
from toolheal.healing.types import (
    HealingRequest,
    HealingResult,
    HealingStrategy,
    StrategyCandidate,
    StringHealingParams,
)

__all__ = [
    "HealingCache",
    "ChatResponse",
    "ChatResponseStatus",
    "CorrectionEndpoint",
    "OpenAICompatibleEndpoint",
    "parse_json_response",
    "HealingEngine",
    "HealingIntegration",
    "HealthStatus",
    "HealingMetrics",
    "FilePatch",
    "PatchApplyError",
    "PatchApplyResult",
    "PatchHealer",
    "analyze_patch_issues",
    "apply_patch",
    "parse_unified_diff",
    "ModelBugPattern",
    "ModelBugPatternTable",
    "HealingStrategyBase",
    "LLMCorrectionStrategy",
    "NewStringAdjustmentStrategy",
    "PatternMatchingStrategy",
    "UnescapeStrategy",
    "HealingRequest",
    "HealingResult",
    "HealingStrategy",
    "StrategyCandidate",
    "StringHealingParams",
]

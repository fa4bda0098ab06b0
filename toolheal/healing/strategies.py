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

"""Repair strategies for string replace parameters.

A strategy only proposes a candidate; the engine decides whether the
candidate is acceptable (unique match, not a no-op). Strategies run in
the order:

1. UnescapeStrategy: model-family escaping fixes from the bug table
2. PatternMatchingStrategy: generic whitespace normalization
3. LLMCorrectionStrategy: ask the correction endpoint
4. NewStringAdjustmentStrategy: trim both strings
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from toolheal.config.settings import Settings
from toolheal.feature_flags.manager import FeatureFlagManager
from toolheal.healing.correction import (
    NEW_STRING_CORRECTION_SCHEMA,
    OLD_STRING_CORRECTION_SCHEMA,
    CorrectionEndpoint,
    build_new_string_messages,
    build_old_string_messages,
    parse_json_response,
)
from toolheal.healing.patterns import FAMILY_FIX_FLAGS, ModelBugPattern, ModelBugPatternTable
from toolheal.healing.types import HealingRequest, HealingStrategy, StrategyCandidate
from toolheal.healing.utils import (
    create_healing_context,
    find_whitespace_insensitive,
    match_and_count,
    normalize_whitespace,
    strip_trailing_whitespace,
    unescape_over_escaped,
)

logger = logging.getLogger(__name__)

UNESCAPE_CONFIDENCE = 0.9
PATTERN_MATCHING_CONFIDENCE = 0.7
LLM_DEFAULT_CONFIDENCE = 0.8
NEWSTRING_ADJUSTMENT_CONFIDENCE = 0.6


class HealingStrategyBase(ABC):
    """One repair technique.

    Subclasses set ``strategy`` and implement ``propose``. ``propose``
    returns None when the technique has nothing to offer; raising is
    allowed and counts as the strategy failing.
    """

    strategy: HealingStrategy = HealingStrategy.NONE

    @property
    def name(self) -> str:
        return self.strategy.value

    @property
    def uses_metacognition(self) -> bool:
        return False

    def is_available(self, request: HealingRequest) -> bool:
        return True

    @abstractmethod
    async def propose(self, request: HealingRequest) -> Optional[StrategyCandidate]: ...


def family_patterns(
    request: HealingRequest, patterns: ModelBugPatternTable, flags: FeatureFlagManager
) -> List[ModelBugPattern]:
    """Bug patterns for the request's model, honoring per-family fix flags."""
    family = patterns.match_family(request.model)
    if family is None:
        return []
    flag = FAMILY_FIX_FLAGS.get(family)
    if flag is not None and not flags.is_enabled(flag):
        return []
    return patterns.patterns_for(family)


class UnescapeStrategy(HealingStrategyBase):
    """Undo the declared model family's known escaping bugs."""

    strategy = HealingStrategy.UNESCAPE

    def __init__(self, patterns: ModelBugPatternTable, flags: FeatureFlagManager):
        self.patterns = patterns
        self.flags = flags

    def is_available(self, request: HealingRequest) -> bool:
        return bool(family_patterns(request, self.patterns, self.flags))

    async def propose(self, request: HealingRequest) -> Optional[StrategyCandidate]:
        rows = family_patterns(request, self.patterns, self.flags)
        old = self.patterns.apply(request.params.old_string, rows)
        if old == request.params.old_string:
            return None
        new = self.patterns.apply(request.params.new_string, rows)
        return StrategyCandidate(old, new, UNESCAPE_CONFIDENCE)


class PatternMatchingStrategy(HealingStrategyBase):
    """Match old_string against the file ignoring whitespace differences.

    Trailing whitespace is tried first. Failing that, the whitespace
    normalized tokens are located in the file and the exact file segment
    becomes the new old_string.
    """

    strategy = HealingStrategy.PATTERN_MATCHING

    async def propose(self, request: HealingRequest) -> Optional[StrategyCandidate]:
        params = request.params
        content = request.file_content
        allowed = params.allowed_occurrences
        new = strip_trailing_whitespace(params.new_string)

        trimmed = strip_trailing_whitespace(params.old_string)
        if trimmed and trimmed != params.old_string:
            if match_and_count(content, trimmed) == allowed:
                return StrategyCandidate(trimmed, new, PATTERN_MATCHING_CONFIDENCE)

        normalized = normalize_whitespace(params.old_string)
        keep_indent = params.old_string[:1] in (" ", "\t")
        segments = find_whitespace_insensitive(content, normalized, keep_indent=keep_indent)
        if len(segments) != allowed or len(set(segments)) != 1:
            logger.debug(
                "Pattern matching found %d candidate segments (need %d)", len(segments), allowed
            )
            return None
        if segments[0] == params.old_string:
            return None
        return StrategyCandidate(segments[0], new, PATTERN_MATCHING_CONFIDENCE)


class LLMCorrectionStrategy(HealingStrategyBase):
    """Ask the correction endpoint which file segment was meant."""

    strategy = HealingStrategy.LLM_CORRECTION

    def __init__(
        self,
        endpoint: Optional[CorrectionEndpoint],
        patterns: ModelBugPatternTable,
        flags: FeatureFlagManager,
        settings: Settings,
    ):
        self.endpoint = endpoint
        self.patterns = patterns
        self.flags = flags
        self.settings = settings

    @property
    def uses_metacognition(self) -> bool:
        return True

    def is_available(self, request: HealingRequest) -> bool:
        return self.endpoint is not None and self.flags.is_enabled("metacognition_enabled")

    async def propose(self, request: HealingRequest) -> Optional[StrategyCandidate]:
        if self.endpoint is None:
            return None
        params = request.params
        content = request.file_content
        if self.flags.is_enabled("healing_context_truncation"):
            content = create_healing_context(
                content, params.old_string, self.settings.healing_context_max_chars
            )

        messages = build_old_string_messages(
            content, params.old_string, params.new_string, request.original_error_message
        )
        response = await self.endpoint.make_chat_request(
            "toolHealing", messages, OLD_STRING_CORRECTION_SCHEMA, request.token
        )
        if not response.ok:
            logger.info(
                "Correction endpoint returned %s: %s", response.status.value, response.error
            )
            return None

        data = parse_json_response(response.content)
        if data is None:
            logger.warning("Correction endpoint reply was not JSON")
            return None
        snippet = data.get("corrected_target_snippet")
        if not isinstance(snippet, str) or not snippet:
            return None

        new = data.get("corrected_new_string")
        if not isinstance(new, str):
            new = await self._correct_new_string(request, snippet)

        try:
            confidence = float(data.get("confidence", LLM_DEFAULT_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = LLM_DEFAULT_CONFIDENCE
        confidence = min(1.0, max(0.0, confidence))
        return StrategyCandidate(snippet, new, confidence)

    async def _correct_new_string(self, request: HealingRequest, snippet: str) -> str:
        """Replacement text matching the corrected snippet's escaping.

        The endpoint is asked again only when new_string carries literal
        escape sequences; otherwise, and whenever that request fails, the
        model family's table fixes are applied.
        """
        params = request.params
        rows = family_patterns(request, self.patterns, self.flags)
        fallback = self.patterns.apply(params.new_string, rows)
        if self.endpoint is None or unescape_over_escaped(params.new_string) == params.new_string:
            return fallback

        messages = build_new_string_messages(params.old_string, snippet, params.new_string)
        try:
            response = await self.endpoint.make_chat_request(
                "newStringCorrection", messages, NEW_STRING_CORRECTION_SCHEMA, request.token
            )
        except Exception as e:
            logger.warning("New string correction failed: %s", e)
            return fallback
        if not response.ok:
            return fallback

        data = parse_json_response(response.content) or {}
        corrected = data.get("corrected_new_string")
        if not isinstance(corrected, str):
            return fallback
        return corrected


class NewStringAdjustmentStrategy(HealingStrategyBase):
    """Trim leading and trailing whitespace from both strings."""

    strategy = HealingStrategy.NEWSTRING_ADJUSTMENT

    async def propose(self, request: HealingRequest) -> Optional[StrategyCandidate]:
        old = request.params.old_string.strip()
        new = request.params.new_string.strip()
        if old == request.params.old_string and new == request.params.new_string:
            return None
        return StrategyCandidate(old, new, NEWSTRING_ADJUSTMENT_CONFIDENCE)


def default_strategies(
    patterns: ModelBugPatternTable,
    flags: FeatureFlagManager,
    endpoint: Optional[CorrectionEndpoint],
    settings: Settings,
) -> List[HealingStrategyBase]:
    """Strategies in the order they are tried."""
    return [
        UnescapeStrategy(patterns, flags),
        PatternMatchingStrategy(),
        LLMCorrectionStrategy(endpoint, patterns, flags, settings),
        NewStringAdjustmentStrategy(),
    ]

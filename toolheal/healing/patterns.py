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

"""Model-family escaping bug table.

Each family maps to an ordered list of (pattern, replacement) fixes. New
vendor quirks are added as table rows, not code paths:

    table = ModelBugPatternTable()
    table.register("mistral", ModelBugPattern("mistral_crlf", re.compile(r"\\r\\n"), "\\n"))
"""

import logging
import re
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from toolheal.healing.utils import unescape_over_escaped
from toolheal.tools.base import ModelIdentity

logger = logging.getLogger(__name__)

Replacement = Union[str, Callable[["re.Match[str]"], str]]


@dataclass(frozen=True)
class ModelBugPattern:
    """One known output quirk of a model family."""

    name: str
    pattern: "re.Pattern[str]"
    replacement: Replacement
    description: str = ""

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


def _over_escape(match: "re.Match[str]") -> str:
    return unescape_over_escaped(match.group(0))


DEFAULT_MODEL_BUG_PATTERNS: Dict[str, List[ModelBugPattern]] = {
    "gemini": [
        ModelBugPattern(
            "gemini_over_escape",
            re.compile(r"\\+(n|t|r|'|\"|`|\\|\n)"),
            _over_escape,
            "Backslash runs before n, t, r, quotes, backtick or newline",
        ),
        ModelBugPattern(
            "gemini_backtick_escape",
            re.compile(r"\\`"),
            "`",
            "Escaped backticks",
        ),
    ],
    "deepseek": [
        ModelBugPattern(
            "deepseek_json_escape",
            re.compile(r"\\\""),
            '"',
            "JSON-escaped double quotes",
        ),
        ModelBugPattern(
            "deepseek_newline_escape",
            re.compile(r"\\n"),
            "\n",
            "Literal backslash-n instead of a line break",
        ),
    ],
    "claude": [
        ModelBugPattern(
            "claude_extra_spaces",
            re.compile(r" {2,}"),
            " ",
            "Runs of spaces where the source has one",
        ),
        ModelBugPattern(
            "claude_mixed_tabs",
            re.compile(r"\t +"),
            "\t",
            "Spaces emitted after a tab",
        ),
    ],
}

# Flag that must be enabled for a family's fixes to apply
FAMILY_FIX_FLAGS: Dict[str, str] = {
    "gemini": "gemini_unescape_fix",
    "claude": "claude_formatting_fix",
    "gpt": "gpt_context_fix",
}


class ModelBugPatternTable:
    """Lookup of bug patterns by model family.

    Families match by case-insensitive substring, so ``gemini-1.5-pro``
    and ``Gemini`` both select the ``gemini`` rows.
    """

    def __init__(self, patterns: Optional[Dict[str, List[ModelBugPattern]]] = None) -> None:
        source = DEFAULT_MODEL_BUG_PATTERNS if patterns is None else patterns
        self._lock = threading.RLock()
        self._patterns: Dict[str, List[ModelBugPattern]] = {
            family.lower(): list(rows) for family, rows in source.items()
        }

    def register(self, family: str, pattern: ModelBugPattern) -> None:
        with self._lock:
            self._patterns.setdefault(family.lower(), []).append(pattern)
        logger.info("Registered bug pattern '%s' for model family '%s'", pattern.name, family)

    def families(self) -> List[str]:
        with self._lock:
            return list(self._patterns)

    def match_family(self, model: Union[ModelIdentity, str, None]) -> Optional[str]:
        """Table family a model belongs to, or None."""
        if model is None:
            return None
        if isinstance(model, ModelIdentity):
            haystacks = [model.family.lower(), model.name.lower()]
        else:
            haystacks = [model.lower()]
        with self._lock:
            for family in self._patterns:
                if any(family in haystack for haystack in haystacks if haystack):
                    return family
        return None

    def patterns_for(self, model: Union[ModelIdentity, str, None]) -> List[ModelBugPattern]:
        """Bug patterns for a model (empty for unknown families)."""
        family = self.match_family(model)
        if family is None:
            return []
        with self._lock:
            return list(self._patterns[family])

    def apply(self, text: str, patterns: List[ModelBugPattern]) -> str:
        """Apply patterns in order."""
        for pattern in patterns:
            text = pattern.apply(text)
        return text

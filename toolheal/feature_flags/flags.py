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

"""Feature flag and policy definitions for tool healing.

Boolean flags switch capabilities on and off; policy values are the
numeric knobs (timeouts, limits) that shape how enabled capabilities run.

Flag Metadata:
- description: Human-readable description
- default: Default value
- dependencies: List of flags that must be enabled first
- category: Category for grouping (healing, model_fixes, performance, telemetry)
- stable: Whether feature is considered stable (safe for production)
"""

from __future__ import annotations

from typing import Any, Dict, List, Union

from toolheal.config.timeouts import Timeouts


HEALING_FLAGS: Dict[str, Dict[str, Any]] = {
    # ==========================================================================
    # Healing switches
    # ==========================================================================
    "healing_enabled": {
        "description": "Master switch for all tool-call healing",
        "default": True,
        "dependencies": [],
        "category": "healing",
        "stable": True,
    },
    "string_replace_healing_enabled": {
        "description": "Heal no-match failures of string replace tools",
        "default": True,
        "dependencies": ["healing_enabled"],
        "category": "healing",
        "stable": True,
    },
    "patch_healing_enabled": {
        "description": "Heal unified diffs that fail to apply",
        "default": True,
        "dependencies": ["healing_enabled"],
        "category": "healing",
        "stable": True,
    },
    "metacognition_enabled": {
        "description": "Consult the correction endpoint when heuristics fail",
        "default": True,
        "dependencies": [],
        "category": "healing",
        "stable": False,
    },
    "healing_cache_enabled": {
        "description": "Cache successful healings keyed by model family and input",
        "default": True,
        "dependencies": [],
        "category": "performance",
        "stable": True,
    },
    # ==========================================================================
    # Model-specific fixes
    # ==========================================================================
    "gemini_unescape_fix": {
        "description": "Undo Gemini over-escaping of newlines, tabs and quotes",
        "default": True,
        "dependencies": [],
        "category": "model_fixes",
        "stable": True,
    },
    "claude_formatting_fix": {
        "description": "Collapse Claude extra spaces and mixed tab indentation",
        "default": True,
        "dependencies": [],
        "category": "model_fixes",
        "stable": True,
    },
    "gpt_context_fix": {
        "description": "Apply GPT-family context fixes",
        "default": True,
        "dependencies": [],
        "category": "model_fixes",
        "stable": True,
    },
    # ==========================================================================
    # Performance and telemetry
    # ==========================================================================
    "healing_context_truncation": {
        "description": "Send only a window of the file to the correction endpoint",
        "default": True,
        "dependencies": [],
        "category": "performance",
        "stable": True,
    },
    "healing_detailed_telemetry": {
        "description": "Log per-strategy healing telemetry at DEBUG",
        "default": True,
        "dependencies": [],
        "category": "telemetry",
        "stable": True,
    },
    "healing_performance_metrics": {
        "description": "Record healing timings in metrics",
        "default": True,
        "dependencies": [],
        "category": "telemetry",
        "stable": True,
    },
}


Number = Union[int, float]

HEALING_POLICY: Dict[str, Dict[str, Any]] = {
    "string_replace_healing_timeout": {
        "description": "Seconds allowed for one string healing attempt",
        "default": Timeouts.HEALING_STRING,
    },
    "patch_healing_timeout": {
        "description": "Seconds allowed for one patch healing attempt",
        "default": Timeouts.HEALING_PATCH,
    },
    "strategy_timeout_unescape": {
        "description": "Seconds allowed for the unescape strategy",
        "default": Timeouts.STRATEGY_UNESCAPE,
    },
    "strategy_timeout_pattern_matching": {
        "description": "Seconds allowed for the pattern matching strategy",
        "default": Timeouts.STRATEGY_PATTERN_MATCHING,
    },
    "strategy_timeout_llm_correction": {
        "description": "Seconds allowed for the LLM correction strategy",
        "default": Timeouts.STRATEGY_LLM_CORRECTION,
    },
    "strategy_timeout_newstring_adjustment": {
        "description": "Seconds allowed for the newstring adjustment strategy",
        "default": Timeouts.STRATEGY_NEWSTRING_ADJUSTMENT,
    },
    "healing_concurrent_limit": {
        "description": "Maximum healing attempts running at once; excess attempts wait",
        "default": 3,
    },
    "string_replace_healing_max_attempts": {
        "description": "Maximum string healing attempts per failed call",
        "default": 3,
    },
    "patch_healing_max_attempts": {
        "description": "Maximum patch healing attempts per failed call",
        "default": 2,
    },
}


def get_flag_metadata(flag_name: str) -> Dict[str, Any]:
    """Get metadata for a specific feature flag.

    Returns:
        Metadata dictionary or empty dict if flag not found
    """
    return HEALING_FLAGS.get(flag_name, {}).copy()


def get_flag_dependencies(flag_name: str) -> List[str]:
    """Direct dependencies of a flag.

    Raises:
        ValueError: If flag depends on itself
    """
    dependencies = list(HEALING_FLAGS.get(flag_name, {}).get("dependencies", []))
    if flag_name in dependencies:
        raise ValueError(f"Flag '{flag_name}' has circular dependency on itself")
    return dependencies


def validate_flag_dependencies(flag_name: str, enabled_flags: Dict[str, bool]) -> bool:
    """Validate that all dependencies for a flag are enabled.

    Args:
        flag_name: Name of the flag to validate
        enabled_flags: Current flag values

    Returns:
        True if all dependencies are satisfied
    """
    if flag_name not in HEALING_FLAGS:
        return False
    return all(enabled_flags.get(dep, False) for dep in get_flag_dependencies(flag_name))


def get_flags_by_category(category: str) -> Dict[str, Dict[str, Any]]:
    """Get all flags in a specific category."""
    return {
        flag_name: flag_def
        for flag_name, flag_def in HEALING_FLAGS.items()
        if flag_def.get("category") == category
    }


def get_stable_flags() -> Dict[str, Dict[str, Any]]:
    """Get all flags marked as stable (safe for production)."""
    return {
        flag_name: flag_def
        for flag_name, flag_def in HEALING_FLAGS.items()
        if flag_def.get("stable", False)
    }


def get_all_flag_names() -> List[str]:
    return list(HEALING_FLAGS.keys())


def get_flag_categories() -> List[str]:
    categories = {flag_def.get("category") for flag_def in HEALING_FLAGS.values()}
    return sorted(c for c in categories if c)


def get_all_policy_names() -> List[str]:
    return list(HEALING_POLICY.keys())


def get_policy_default(name: str) -> Number:
    """Default value of a policy entry.

    Raises:
        ValueError: If the policy name is not recognized
    """
    if name not in HEALING_POLICY:
        raise ValueError(
            f"Unknown healing policy: {name}. Valid policies: {', '.join(get_all_policy_names())}"
        )
    return HEALING_POLICY[name]["default"]

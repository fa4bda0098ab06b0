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

"""Centralized timeout configuration for toolheal.

Usage:
    from toolheal.config.timeouts import Timeouts

    executor = ToolExecutor(registry, default_timeout=Timeouts.TOOL_DEFAULT or None)

    async with httpx.AsyncClient(timeout=Timeouts.HTTP_CORRECTION) as client:
        ...
"""

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration.

    All values are in seconds. Environment variables can override defaults:
        TOOLHEAL_TIMEOUT_TOOL_DEFAULT=60
        TOOLHEAL_TIMEOUT_HEALING_STRING=5.0
        etc.
    """

    # Tool invocation (0.0 = no timeout)
    TOOL_DEFAULT: float = 0.0

    # Whole healing attempt, per tool type
    HEALING_STRING: float = 10.0
    HEALING_PATCH: float = 15.0

    # Individual healing strategies
    STRATEGY_UNESCAPE: float = 1.0
    STRATEGY_PATTERN_MATCHING: float = 1.0
    STRATEGY_LLM_CORRECTION: float = 30.0
    STRATEGY_NEWSTRING_ADJUSTMENT: float = 1.0

    # Correction endpoint HTTP requests
    HTTP_CORRECTION: float = 30.0

    @classmethod
    def from_env(cls) -> "TimeoutConfig":
        """Create config with environment variable overrides.

        Environment variables follow the pattern TOOLHEAL_TIMEOUT_{FIELD_NAME}.
        """

        def get_float(name: str, default: float) -> float:
            env_key = f"TOOLHEAL_TIMEOUT_{name}"
            value = os.environ.get(env_key)
            if value is not None:
                try:
                    return float(value)
                except ValueError:
                    pass
            return default

        return cls(
            TOOL_DEFAULT=get_float("TOOL_DEFAULT", cls.TOOL_DEFAULT),
            HEALING_STRING=get_float("HEALING_STRING", cls.HEALING_STRING),
            HEALING_PATCH=get_float("HEALING_PATCH", cls.HEALING_PATCH),
            STRATEGY_UNESCAPE=get_float("STRATEGY_UNESCAPE", cls.STRATEGY_UNESCAPE),
            STRATEGY_PATTERN_MATCHING=get_float(
                "STRATEGY_PATTERN_MATCHING", cls.STRATEGY_PATTERN_MATCHING
            ),
            STRATEGY_LLM_CORRECTION=get_float(
                "STRATEGY_LLM_CORRECTION", cls.STRATEGY_LLM_CORRECTION
            ),
            STRATEGY_NEWSTRING_ADJUSTMENT=get_float(
                "STRATEGY_NEWSTRING_ADJUSTMENT", cls.STRATEGY_NEWSTRING_ADJUSTMENT
            ),
            HTTP_CORRECTION=get_float("HTTP_CORRECTION", cls.HTTP_CORRECTION),
        )


# Default instance with environment overrides
Timeouts = TimeoutConfig.from_env()

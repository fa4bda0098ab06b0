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

"""Healing metrics.

Monotonic counters updated for every attempt, cached or not. Reset only
through ``reset()``; clearing the cache does not touch them.
"""

import logging
import threading
from types import MappingProxyType
from typing import Any, Dict, Mapping

from toolheal.healing.types import HealingResult

logger = logging.getLogger(__name__)


class HealingMetrics:
    """Process-wide healing counters with atomic updates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reset_unlocked()

    def _reset_unlocked(self) -> None:
        self._total_attempts = 0
        self._successes = 0
        self._failures = 0
        self._cache_hits = 0
        self._metacognition_uses = 0
        self._total_time = 0.0
        self._by_model: Dict[str, Dict[str, Any]] = {}
        self._by_method: Dict[str, Dict[str, int]] = {}

    def record(self, family: str, result: HealingResult, record_time: bool = True) -> None:
        """Fold one attempt's result into the counters.

        Args:
            family: Model family of the attempt
            result: The attempt's outcome
            record_time: Whether to fold elapsed time into the averages
        """
        elapsed = result.elapsed if record_time else 0.0
        with self._lock:
            self._total_attempts += 1
            self._total_time += elapsed
            if result.cached:
                self._cache_hits += 1
            if result.metacognition_used:
                self._metacognition_uses += 1

            model = self._by_model.setdefault(
                family, {"attempts": 0, "successes": 0, "total_time": 0.0}
            )
            model["attempts"] += 1
            model["total_time"] += elapsed

            if result.success:
                self._successes += 1
                model["successes"] += 1
            else:
                self._failures += 1

            for name in result.attempted_strategies:
                self._by_method.setdefault(name, {"uses": 0, "successes": 0})["uses"] += 1
            if result.success and result.healing_applied:
                method = self._by_method.setdefault(
                    result.strategy.value, {"uses": 0, "successes": 0}
                )
                if result.cached:
                    method["uses"] += 1
                method["successes"] += 1

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only view of the counters at this moment."""
        with self._lock:
            total = self._total_attempts
            data = {
                "total_attempts": total,
                "successful_healings": self._successes,
                "failed_healings": self._failures,
                "cache_hits": self._cache_hits,
                "average_healing_time": self._total_time / total if total else 0.0,
                "metacognition_usage_rate": self._metacognition_uses / total if total else 0.0,
                "healings_by_model": {k: dict(v) for k, v in self._by_model.items()},
                "healing_method_stats": {k: dict(v) for k, v in self._by_method.items()},
            }
        return MappingProxyType(data)

    def reset(self) -> None:
        with self._lock:
            self._reset_unlocked()
        logger.info("Healing metrics reset")

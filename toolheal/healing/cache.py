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

"""Cache of successful healings.

Keys are a SHA-256 of (model family, old string without trailing
whitespace, new string), so the same broken call from the same family is
repaired once. Only line endings are normalized in the new string; its
whitespace is content.

Only successes are stored; a failure may become fixable once the file
changes.

Example:
    cache = HealingCache(max_size=500)
    cached = cache.get("gemini", old, new)
    if cached is None:
        result = await run_strategies()
        cache.put("gemini", old, new, result)
"""

from __future__ import annotations

import hashlib
import logging
import threading
from typing import Any, Dict, Optional

from cachetools import LRUCache  # type: ignore[import-untyped]

from toolheal.healing.types import HealingResult
from toolheal.healing.utils import normalize_line_endings, strip_trailing_whitespace

logger = logging.getLogger(__name__)


class HealingCache:
    """Bounded LRU cache of successful HealingResults.

    Thread-safe implementation using locks.
    """

    def __init__(self, max_size: int = 1000) -> None:
        self._max_size = max_size
        self._lock = threading.RLock()
        self._cache: LRUCache[str, HealingResult] = LRUCache(maxsize=max_size)
        self._stats: Dict[str, int] = {"hits": 0, "misses": 0}
        logger.debug("Healing cache initialized: max_size=%d", max_size)

    @staticmethod
    def make_key(family: str, old_string: str, new_string: str) -> str:
        """SHA-256 cache key of family and minimally normalized strings."""
        material = "\0".join(
            [
                family.lower(),
                strip_trailing_whitespace(old_string),
                normalize_line_endings(new_string),
            ]
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def get(self, family: str, old_string: str, new_string: str) -> Optional[HealingResult]:
        key = self.make_key(family, old_string, new_string)
        with self._lock:
            result = self._cache.get(key)
            if result is None:
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return result

    def put(self, family: str, old_string: str, new_string: str, result: HealingResult) -> bool:
        """Store a successful result. Failures are ignored.

        Returns:
            True if the result was stored
        """
        if not result.success:
            return False
        key = self.make_key(family, old_string, new_string)
        with self._lock:
            self._cache[key] = result
        return True

    def clear(self) -> None:
        """Drop all entries and reset hit/miss counters."""
        with self._lock:
            self._cache.clear()
            self._stats = {"hits": 0, "misses": 0}
        logger.info("Healing cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            hits = self._stats["hits"]
            misses = self._stats["misses"]
            total = hits + misses
            return {
                "size": len(self._cache),
                "max_size": self._max_size,
                "hits": hits,
                "misses": misses,
                "hit_rate": hits / total if total > 0 else 0.0,
            }

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

"""Shared bound on concurrent healing attempts.

String and patch healing draw from one semaphore sized by the
``healing_concurrent_limit`` policy, so excess attempts of either kind wait.
"""

import asyncio
import logging
from typing import Optional

from toolheal.feature_flags.manager import FeatureFlagManager

logger = logging.getLogger(__name__)


class ConcurrencyLimiter:
    """Lazily created semaphore following the concurrency policy.

    The semaphore is built on first use, inside a running event loop, and
    rebuilt when the policy value changes.
    """

    def __init__(self, flags: FeatureFlagManager, policy: str = "healing_concurrent_limit"):
        self.flags = flags
        self.policy = policy
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._limit = 0

    def get(self) -> asyncio.Semaphore:
        limit = max(1, int(self.flags.get_policy(self.policy)))
        if self._semaphore is None or limit != self._limit:
            if self._semaphore is not None:
                logger.debug("Healing concurrency limit changed to %d", limit)
            self._semaphore = asyncio.Semaphore(limit)
            self._limit = limit
        return self._semaphore

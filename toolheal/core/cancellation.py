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

"""Cooperative cancellation handle shared between a caller and a tool.

Executors poll ``is_cancellation_requested`` at their own suspension points,
or attach a callback that aborts in-flight I/O (subprocess, HTTP request).
Cancellation is one-way: once requested it is never cleared.

Example:
    token = CancellationToken()
    remove = token.on_cancelled(lambda reason: process.kill())
    ...
    token.cancel("timeout")
    remove()
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from toolheal.core.errors import CancellationRequestedError

logger = logging.getLogger(__name__)

CancellationCallback = Callable[[Optional[str]], None]


class CancellationToken:
    """Thread-safe cancellation flag plus a registry of abort callbacks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[CancellationCallback] = []

    @property
    def is_cancellation_requested(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Request cancellation and run registered callbacks once.

        Args:
            reason: Optional reason recorded on the token (e.g. "timeout")

        Returns:
            True if this call performed the transition, False if already cancelled
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._reason = reason
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback(reason)
            except Exception as e:
                logger.warning("Cancellation callback failed: %s", e)
        return True

    def on_cancelled(self, callback: CancellationCallback) -> Callable[[], None]:
        """Register a callback to run on cancellation.

        If the token is already cancelled the callback runs immediately.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            already = self._cancelled
            if not already:
                self._callbacks.append(callback)

        if already:
            try:
                callback(self._reason)
            except Exception as e:
                logger.warning("Cancellation callback failed: %s", e)
            return lambda: None

        def remove() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self, tool_name: Optional[str] = None) -> None:
        """Raise CancellationRequestedError if cancellation was requested."""
        if self._cancelled:
            message = "Cancellation requested"
            if self._reason:
                message += f": {self._reason}"
            raise CancellationRequestedError(message, tool_name=tool_name)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, reason={self._reason!r})"

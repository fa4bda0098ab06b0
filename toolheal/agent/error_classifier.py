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

"""Error classification for tool invocation failures.

Maps raised exceptions and error messages onto the tool failure taxonomy so
the pipeline can record metrics and the healing layer can decide whether a
failure is repairable. Classification is best-effort: typed exceptions win,
then message substrings, then UNKNOWN.

SOLID Principles:
- SRP: Single responsibility of error classification
- OCP: New error patterns can be added without modifying classification logic
"""

import asyncio
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple, Type, Union

from toolheal.core.errors import (
    CancellationRequestedError,
    ContextError,
    NoMatchError,
    ToolNotFoundError,
    ToolPermissionError,
    ToolTimeoutError,
    ToolValidationError,
)


class ErrorKind(Enum):
    """Classification of tool invocation failures."""

    TOOL_NOT_FOUND = "tool_not_found"
    EXECUTION_TIMEOUT = "execution_timeout"
    INVALID_INPUT = "invalid_input"
    NO_MATCH = "no_match"
    """Target text absent from the document; the only healable kind."""

    PERMISSION_DENIED = "permission_denied"
    CANCELLATION_REQUESTED = "cancellation_requested"
    CONTEXT_ERROR = "context_error"
    UNKNOWN = "unknown"


# Tool types the healing engine knows how to repair
HEALABLE_TOOL_TYPES = frozenset({"string_replace", "patch_apply"})

# "Tool 'x' not found", as produced by ToolNotFoundError
_TOOL_NOT_FOUND_RE = re.compile(r"^tool '[^']*' not found")


class ToolErrorClassifier:
    """Classifies tool failures into ErrorKind values."""

    TYPE_MAP: List[Tuple[Type[BaseException], ErrorKind]] = [
        (NoMatchError, ErrorKind.NO_MATCH),
        (ToolNotFoundError, ErrorKind.TOOL_NOT_FOUND),
        (ToolTimeoutError, ErrorKind.EXECUTION_TIMEOUT),
        (asyncio.TimeoutError, ErrorKind.EXECUTION_TIMEOUT),
        (TimeoutError, ErrorKind.EXECUTION_TIMEOUT),
        (ToolValidationError, ErrorKind.INVALID_INPUT),
        (ToolPermissionError, ErrorKind.PERMISSION_DENIED),
        (PermissionError, ErrorKind.PERMISSION_DENIED),
        (CancellationRequestedError, ErrorKind.CANCELLATION_REQUESTED),
        (asyncio.CancelledError, ErrorKind.CANCELLATION_REQUESTED),
        (ContextError, ErrorKind.CONTEXT_ERROR),
    ]

    # Checked in order; first hit wins
    MESSAGE_PATTERNS: Dict[ErrorKind, List[str]] = {
        ErrorKind.NO_MATCH: [
            "no match found",
            "not found in file",
            "could not find",
            "no occurrences",
            "context mismatch",
            "failed to apply",
        ],
        ErrorKind.TOOL_NOT_FOUND: [
            "tool not found",
            "unknown tool",
            "no such tool",
        ],
        ErrorKind.EXECUTION_TIMEOUT: [
            "timed out",
            "timeout",
        ],
        ErrorKind.PERMISSION_DENIED: [
            "permission denied",
            "access denied",
            "eacces",
            "eperm",
            "read-only file system",
        ],
        ErrorKind.CANCELLATION_REQUESTED: [
            "cancellation requested",
            "cancelled",
            "canceled",
            "aborted",
        ],
        ErrorKind.INVALID_INPUT: [
            "invalid input",
            "invalid argument",
            "validation failed",
            "is required",
            "must be valid json",
            "expected type",
        ],
        ErrorKind.CONTEXT_ERROR: [
            "invalid context",
            "missing context",
            "working directory",
            "session not found",
        ],
    }

    def classify(self, error: Union[BaseException, str, None]) -> ErrorKind:
        """Classify an exception or error message.

        Args:
            error: The raised exception, or an error message from a failed result

        Returns:
            ErrorKind for the failure
        """
        if error is None:
            return ErrorKind.UNKNOWN

        if isinstance(error, BaseException):
            for exc_type, kind in self.TYPE_MAP:
                if isinstance(error, exc_type):
                    return kind
            message = str(error)
        else:
            message = error

        return self.classify_message(message)

    def classify_message(self, message: str) -> ErrorKind:
        """Classify by case-insensitive substring of the message."""
        error_lower = message.lower()
        if _TOOL_NOT_FOUND_RE.search(error_lower):
            return ErrorKind.TOOL_NOT_FOUND
        for kind, patterns in self.MESSAGE_PATTERNS.items():
            for pattern in patterns:
                if pattern in error_lower:
                    return kind
        return ErrorKind.UNKNOWN

    @staticmethod
    def is_healable(kind: Optional[ErrorKind], tool_type: Optional[str]) -> bool:
        """Whether a failure may be handed to the healing engine."""
        return kind == ErrorKind.NO_MATCH and tool_type in HEALABLE_TOOL_TYPES


_global_classifier: Optional[ToolErrorClassifier] = None


def get_error_classifier() -> ToolErrorClassifier:
    """Get or create the shared error classifier instance."""
    global _global_classifier
    if _global_classifier is None:
        _global_classifier = ToolErrorClassifier()
    return _global_classifier

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

"""Centralized error handling for toolheal.

This module provides:
- Custom exception types mirroring the tool failure taxonomy
- Error handler utility with structured logging
- Recovery hints per failure category
- Correlation IDs for tracing a failure across logs
"""

from __future__ import annotations

import asyncio
import logging
import traceback
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple, Type


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Tool errors
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_EXECUTION = "tool_execution"
    TOOL_VALIDATION = "tool_validation"
    TOOL_TIMEOUT = "tool_timeout"
    TOOL_NO_MATCH = "tool_no_match"
    TOOL_CANCELLED = "tool_cancelled"
    TOOL_CONTEXT = "tool_context"

    # Healing errors
    HEALING_FAILED = "healing_failed"

    # Configuration errors
    CONFIG_INVALID = "config_invalid"

    # Resource errors
    FILE_NOT_FOUND = "file_not_found"
    FILE_PERMISSION = "file_permission"
    NETWORK_ERROR = "network_error"

    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# Custom Exception Types
# =============================================================================


class ToolhealError(Exception):
    """Base exception for all toolheal errors.

    Provides structured error information including:
    - Error category and severity
    - Correlation ID for tracking
    - Recovery suggestions
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return self.message


class ToolError(ToolhealError):
    """Errors related to tool execution."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.tool_name = tool_name
        self.details["tool_name"] = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str, **kwargs: Any):
        super().__init__(
            f"Tool '{tool_name}' not found",
            tool_name=tool_name,
            category=ErrorCategory.TOOL_NOT_FOUND,
            recovery_hint="Check tool name spelling. Use get_tools() to see registered tools.",
            **kwargs,
        )


class ToolExecutionError(ToolError):
    """Tool execution failures."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("category", ErrorCategory.TOOL_EXECUTION)
        super().__init__(message, tool_name=tool_name, **kwargs)


class ToolValidationError(ToolError):
    """Tool input validation failures."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        invalid_args: Optional[List[str]] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            tool_name=tool_name,
            category=ErrorCategory.TOOL_VALIDATION,
            recovery_hint="Check the required arguments for this tool.",
            **kwargs,
        )
        self.invalid_args = invalid_args or []
        self.details["invalid_args"] = self.invalid_args


class ToolTimeoutError(ToolError):
    """Tool execution timeout."""

    def __init__(
        self,
        tool_name: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ):
        message = (
            f"Tool '{tool_name}' timed out after {timeout} seconds"
            if timeout
            else f"Tool '{tool_name}' timed out"
        )
        super().__init__(
            message,
            tool_name=tool_name,
            category=ErrorCategory.TOOL_TIMEOUT,
            recovery_hint="Try with a longer timeout or simplify the operation.",
            **kwargs,
        )
        self.timeout = timeout
        self.details["timeout"] = timeout


class ToolPermissionError(ToolError):
    """Tool lacked permission to touch a resource."""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            tool_name=tool_name,
            category=ErrorCategory.FILE_PERMISSION,
            recovery_hint="Check file permissions.",
            **kwargs,
        )


class CancellationRequestedError(ToolError):
    """Invocation was cancelled through its cancellation token."""

    def __init__(
        self,
        message: str = "Cancellation requested",
        tool_name: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            tool_name=tool_name,
            category=ErrorCategory.TOOL_CANCELLED,
            severity=ErrorSeverity.WARNING,
            **kwargs,
        )


class ContextError(ToolError):
    """Invocation context was missing or unusable."""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            tool_name=tool_name,
            category=ErrorCategory.TOOL_CONTEXT,
            recovery_hint="Check working directory and session settings.",
            **kwargs,
        )


class NoMatchError(ToolError):
    """Target text was not found in the document.

    This is the only failure kind the healing engine will try to repair.
    """

    def __init__(
        self,
        message: str,
        search_string: str = "",
        file_content: str = "",
        file_path: Optional[str] = None,
        tool_name: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("category", ErrorCategory.TOOL_NO_MATCH)
        super().__init__(message, tool_name=tool_name, **kwargs)
        self.search_string = search_string
        self.file_content = file_content
        self.file_path = file_path
        self.details["file_path"] = file_path


class HealedError(ToolError):
    """A patch was healed but the healed version failed to apply too."""

    def __init__(
        self,
        original_error: Exception,
        healed_error: Exception,
        healed_patch: str,
        **kwargs: Any,
    ):
        super().__init__(
            f"Healed patch failed to apply: {healed_error}",
            category=ErrorCategory.HEALING_FAILED,
            cause=original_error,
            **kwargs,
        )
        self.original_error = original_error
        self.healed_error = healed_error
        self.healed_patch = healed_patch
        self.details["original_error_message"] = str(original_error)


class ConfigurationError(ToolhealError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            category=ErrorCategory.CONFIG_INVALID,
            **kwargs,
        )
        self.config_key = config_key
        self.details["config_key"] = config_key


# =============================================================================
# Error Information
# =============================================================================


@dataclass
class ErrorInfo:
    """One handled tool failure, ready for logs and tool result metadata."""

    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    correlation_id: str
    kind: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)
    recovery_hint: Optional[str] = None
    traceback: Optional[str] = None
    original_exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "kind": self.kind,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
            "recovery_hint": self.recovery_hint,
            "traceback": self.traceback,
            "original_exception": self.original_exception,
        }


# =============================================================================
# Error Handler
# =============================================================================


# Classifier kind values onto categories; core stays independent of the agent layer
KIND_CATEGORIES: Dict[str, ErrorCategory] = {
    "tool_not_found": ErrorCategory.TOOL_NOT_FOUND,
    "execution_timeout": ErrorCategory.TOOL_TIMEOUT,
    "invalid_input": ErrorCategory.TOOL_VALIDATION,
    "no_match": ErrorCategory.TOOL_NO_MATCH,
    "permission_denied": ErrorCategory.FILE_PERMISSION,
    "cancellation_requested": ErrorCategory.TOOL_CANCELLED,
    "context_error": ErrorCategory.TOOL_CONTEXT,
}

# First match wins; TimeoutError and PermissionError are OSError subclasses
BUILTIN_CATEGORIES: Tuple[Tuple[Type[BaseException], ErrorCategory], ...] = (
    (asyncio.TimeoutError, ErrorCategory.TOOL_TIMEOUT),
    (TimeoutError, ErrorCategory.TOOL_TIMEOUT),
    (asyncio.CancelledError, ErrorCategory.TOOL_CANCELLED),
    (PermissionError, ErrorCategory.FILE_PERMISSION),
    (FileNotFoundError, ErrorCategory.FILE_NOT_FOUND),
    (ConnectionError, ErrorCategory.NETWORK_ERROR),
    (KeyError, ErrorCategory.TOOL_VALIDATION),
    (ValueError, ErrorCategory.TOOL_VALIDATION),
    (TypeError, ErrorCategory.TOOL_VALIDATION),
)

CATEGORY_HINTS: Dict[ErrorCategory, str] = {
    ErrorCategory.TOOL_NOT_FOUND: "Check the tool name against the registered tools.",
    ErrorCategory.TOOL_TIMEOUT: "Retry with a smaller input or a longer tool timeout.",
    ErrorCategory.TOOL_VALIDATION: "Check the tool input against its schema.",
    ErrorCategory.TOOL_NO_MATCH: "Re-read the file and copy the target text exactly.",
    ErrorCategory.TOOL_CANCELLED: "The request was cancelled; nothing was changed.",
    ErrorCategory.TOOL_CONTEXT: "Provide the document or session the tool needs.",
    ErrorCategory.FILE_NOT_FOUND: "Check the file path.",
    ErrorCategory.FILE_PERMISSION: "Check that the file is writable.",
    ErrorCategory.NETWORK_ERROR: "Check that the correction endpoint is reachable.",
}

_SEVERITY_LEVELS = {
    ErrorSeverity.DEBUG: logging.DEBUG,
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


def categorize_exception(
    exception: BaseException, kind: Optional[str] = None
) -> ErrorCategory:
    """Category for an exception that is not a ToolhealError.

    The classifier's kind wins when it names a category; otherwise the
    builtin exception type decides, falling back to TOOL_EXECUTION.
    """
    if kind in KIND_CATEGORIES:
        return KIND_CATEGORIES[kind]
    for exc_type, category in BUILTIN_CATEGORIES:
        if isinstance(exception, exc_type):
            return category
    return ErrorCategory.TOOL_EXECUTION


class ErrorHandler:
    """Turns tool failures into logged, correlated ErrorInfo records.

    Each ToolExecutor owns one handler; the last ``max_history`` records
    are kept for inspection.

    Usage:
        handler = ErrorHandler()
        info = handler.handle(exc, context={"tool": "string_replace"}, kind="no_match")
        result.metadata["correlation_id"] = info.correlation_id
    """

    def __init__(
        self,
        logger_name: str = __name__,
        include_traceback: bool = True,
        max_history: int = 100,
    ):
        self.logger = logging.getLogger(logger_name)
        self.include_traceback = include_traceback
        self._history: Deque[ErrorInfo] = deque(maxlen=max_history)

    @property
    def history(self) -> List[ErrorInfo]:
        """Handled failures, oldest first."""
        return list(self._history)

    def handle(
        self,
        exception: BaseException,
        context: Optional[Dict[str, Any]] = None,
        kind: Optional[str] = None,
        log_level: Optional[int] = None,
    ) -> ErrorInfo:
        """Record a failure and return its structured form.

        Args:
            exception: The exception raised by the tool or the executor
            context: Extra details, e.g. the tool name
            kind: ErrorKind value assigned by the error classifier
            log_level: Override the severity-mapped log level
        """
        info = self._create_error_info(exception, context or {}, kind)
        level = log_level if log_level is not None else _SEVERITY_LEVELS[info.severity]
        self.logger.log(
            level,
            "[%s] %s (%s): %s",
            info.correlation_id,
            info.category.value,
            info.kind or "unclassified",
            info.message,
            extra={"details": info.details},
        )
        if info.traceback:
            self.logger.debug("[%s] Traceback:\n%s", info.correlation_id, info.traceback)
        self._history.append(info)
        return info

    def _create_error_info(
        self, exception: BaseException, context: Dict[str, Any], kind: Optional[str]
    ) -> ErrorInfo:
        tb = None
        if self.include_traceback and exception.__traceback__ is not None:
            tb = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )

        if isinstance(exception, ToolhealError):
            return ErrorInfo(
                message=exception.message,
                category=exception.category,
                severity=exception.severity,
                correlation_id=exception.correlation_id,
                kind=kind,
                timestamp=exception.timestamp,
                details={**exception.details, **context},
                recovery_hint=exception.recovery_hint or CATEGORY_HINTS.get(exception.category),
                traceback=tb,
                original_exception=str(exception.cause) if exception.cause else None,
            )

        category = categorize_exception(exception, kind)
        return ErrorInfo(
            message=str(exception) or type(exception).__name__,
            category=category,
            severity=ErrorSeverity.ERROR,
            correlation_id=str(uuid.uuid4())[:8],
            kind=kind,
            details=dict(context),
            recovery_hint=CATEGORY_HINTS.get(category),
            traceback=tb,
            original_exception=type(exception).__name__,
        )

    def clear_history(self) -> None:
        self._history.clear()

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

"""Tool invocation with cancellation, timeout, validation and statistics.

This module provides the invocation pipeline:
- Descriptor lookup (ToolNotFound as a result, never an exception)
- Optional pre-execution input validation (configurable strictness)
- A race between the executor and an optional timeout
- Normalization of whatever the executor returns or raises into ToolResult
- Failure classification and per-tool execution statistics

The pipeline never retries. Repairing a failed call is the healing layer's
job, and only for the one failure kind it understands.
"""

import asyncio
import inspect
import json
import logging
import os
import time
from enum import Enum
from typing import Any, Dict, Optional

from toolheal.agent.error_classifier import ErrorKind, ToolErrorClassifier, get_error_classifier
from toolheal.config.timeouts import Timeouts
from toolheal.core.cancellation import CancellationToken
from toolheal.core.errors import (
    CancellationRequestedError,
    ErrorHandler,
    ToolNotFoundError,
    ToolTimeoutError,
    ToolValidationError,
)
from toolheal.tools.base import InvocationContext, ToolDescriptor, ToolResult
from toolheal.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ValidationMode(Enum):
    """Mode for pre-execution input validation.

    Modes:
        STRICT: Validation errors block execution and return InvalidInput
        LENIENT: Validation errors are logged as warnings but execution proceeds
        OFF: No pre-execution validation (relies on the tool's own checks)
    """

    STRICT = "strict"
    LENIENT = "lenient"
    OFF = "off"


class ToolExecutor:
    """Executes registered tools and normalizes their outcome.

    Responsibilities:
    - Resolve descriptors and bind the per-call context
    - Enforce timeout and cooperative cancellation
    - Convert returns and exceptions into ToolResult
    - Track execution statistics keyed by tool name
    """

    def __init__(
        self,
        tool_registry: ToolRegistry,
        default_timeout: Optional[float] = None,
        validation_mode: ValidationMode = ValidationMode.OFF,
        classifier: Optional[ToolErrorClassifier] = None,
        error_handler: Optional[ErrorHandler] = None,
        default_context: Optional[InvocationContext] = None,
    ):
        """Initialize tool executor.

        Args:
            tool_registry: Registry of available tools
            default_timeout: Seconds before an invocation is abandoned (None/0 = no limit)
            validation_mode: Pre-execution validation strictness
            classifier: Error classifier (uses the shared one if None)
            error_handler: Handler owned by this executor (a new one if None)
            default_context: Context used when a call supplies none
        """
        self.tools = tool_registry
        self.default_timeout = (
            default_timeout if default_timeout is not None else Timeouts.TOOL_DEFAULT
        )
        self.validation_mode = validation_mode
        self.classifier = classifier or get_error_classifier()
        self.error_handler = error_handler or ErrorHandler()
        self.default_context = default_context

        self._stats: Dict[str, Dict[str, Any]] = {}
        self._errors_by_kind: Dict[str, int] = {}

    def set_validation_mode(self, mode: ValidationMode) -> None:
        """Change the validation mode at runtime."""
        self.validation_mode = mode
        logger.info("Validation mode changed to: %s", mode.value)

    def _make_context(self, context: Optional[InvocationContext]) -> InvocationContext:
        if context is not None:
            return context
        if self.default_context is not None:
            return self.default_context
        return InvocationContext(working_directory=os.getcwd())

    async def invoke(
        self,
        name: str,
        input: Any,
        context: Optional[InvocationContext] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> ToolResult:
        """Invoke a tool by name.

        Args:
            name: Registered tool name
            input: Tool input, passed to the executor as-is (or JSON-parsed
                when validation is enabled and the tool has a schema)
            context: Invocation context (a default one is built if None)
            token: Cancellation token shared with the executor
            timeout: Per-call timeout in seconds, overriding the default

        Returns:
            ToolResult; failures carry ``kind`` and the original ``error``
        """
        start_time = time.time()
        stats = self._stats.setdefault(
            name,
            {"calls": 0, "successes": 0, "failures": 0, "total_time": 0.0},
        )
        stats["calls"] += 1

        result = await self._invoke(name, input, context, token, timeout)

        execution_time = time.time() - start_time
        result.execution_time = execution_time
        result.tool_name = name
        stats["total_time"] += execution_time
        if result.success:
            stats["successes"] += 1
        else:
            stats["failures"] += 1
            self._track_error_kind(result.kind or ErrorKind.UNKNOWN)
        return result

    async def _invoke(
        self,
        name: str,
        input: Any,
        context: Optional[InvocationContext],
        token: Optional[CancellationToken],
        timeout: Optional[float],
    ) -> ToolResult:
        descriptor = self.tools.get(name)
        if descriptor is None:
            return self._failure(ToolNotFoundError(name), name, log=False)

        token = token or CancellationToken()
        if token.is_cancellation_requested:
            return self._failure(
                CancellationRequestedError(tool_name=name), name, log=False
            )

        exec_context = self._make_context(context)

        should_proceed, input, validation_error = self._validate_input(descriptor, input)
        if not should_proceed:
            return self._failure(validation_error, name)  # type: ignore[arg-type]

        limit = timeout if timeout is not None else self.default_timeout
        try:
            raw = await self._run_with_timeout(descriptor, input, exec_context, token, limit)
        except ToolTimeoutError as e:
            return self._failure(e, name)
        except CancellationRequestedError as e:
            return self._failure(e, name, log=False)
        except Exception as e:
            return self._failure(e, name)

        return self._normalize(raw, name)

    async def _run_with_timeout(
        self,
        descriptor: ToolDescriptor,
        input: Any,
        context: InvocationContext,
        token: CancellationToken,
        timeout: Optional[float],
    ) -> Any:
        """Race the executor against the timer; the loser is cancelled."""
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(self._call_executor(descriptor, input, context, token))

        def _abort(reason: Optional[str]) -> None:
            loop.call_soon_threadsafe(task.cancel)

        remove_callback = token.on_cancelled(_abort)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout if timeout else None)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            remove_callback()

        if task not in done:
            token.cancel("timeout")
            task.cancel()
            task.add_done_callback(_consume_result)
            logger.warning("Tool '%s' timed out after %s seconds", descriptor.name, timeout)
            raise ToolTimeoutError(tool_name=descriptor.name, timeout=timeout)

        try:
            return task.result()
        except asyncio.CancelledError:
            message = "Cancellation requested"
            if token.reason:
                message = f"{message}: {token.reason}"
            raise CancellationRequestedError(
                message,
                tool_name=descriptor.name,
            ) from None

    @staticmethod
    async def _call_executor(
        descriptor: ToolDescriptor,
        input: Any,
        context: InvocationContext,
        token: CancellationToken,
    ) -> Any:
        result = descriptor.executor(input, context, token)  # type: ignore[misc]
        if inspect.isawaitable(result):
            result = await result
        return result

    def _validate_input(self, descriptor: ToolDescriptor, input: Any) -> tuple:
        """Validate input per validation_mode.

        Returns:
            Tuple of (should_proceed, input_to_use, error)
        """
        if self.validation_mode == ValidationMode.OFF:
            return True, input, None

        validation = self.tools.validate_input(descriptor.name, input)
        if validation.valid:
            return True, validation.sanitized_input, None

        messages = validation.messages
        error_summary = "; ".join(messages[:3])
        if len(messages) > 3:
            error_summary += f" (+{len(messages) - 3} more)"

        if self.validation_mode == ValidationMode.STRICT:
            logger.error("STRICT validation failed for '%s': %s", descriptor.name, error_summary)
            error = ToolValidationError(
                f"Invalid input: {error_summary}",
                tool_name=descriptor.name,
                invalid_args=[issue.field for issue in validation.errors],
            )
            return False, input, error

        logger.warning(
            "Validation issues for '%s' (proceeding anyway): %s", descriptor.name, error_summary
        )
        return True, input, None

    def _normalize(self, raw: Any, name: str) -> ToolResult:
        """Turn whatever the executor returned into a ToolResult."""
        if isinstance(raw, ToolResult):
            if raw.has_errors and raw.kind is None:
                raw.kind = self.classifier.classify(raw.error or raw.text)
            return raw
        if raw is None:
            return ToolResult.ok("", tool_name=name)
        if isinstance(raw, str):
            return ToolResult.ok(raw, tool_name=name)
        if isinstance(raw, (dict, list)):
            try:
                text = json.dumps(raw, default=str)
            except (TypeError, ValueError):
                text = str(raw)
            return ToolResult.ok(text, data=raw, tool_name=name)
        return ToolResult.ok(str(raw), data=raw, tool_name=name)

    def _failure(self, error: Exception, name: str, log: bool = True) -> ToolResult:
        kind = self.classifier.classify(error)
        correlation_id = getattr(error, "correlation_id", None)
        if log:
            error_info = self.error_handler.handle(error, context={"tool": name}, kind=kind.value)
            correlation_id = error_info.correlation_id
        else:
            logger.info("Tool '%s' failed: %s", name, error)
        result = ToolResult.fail(str(error), kind=kind, error=error, tool_name=name)
        result.correlation_id = correlation_id
        return result

    def _track_error_kind(self, kind: ErrorKind) -> None:
        key = kind.value
        self._errors_by_kind[key] = self._errors_by_kind.get(key, 0) + 1

    def get_stats(self) -> Dict[str, Any]:
        """Per-tool execution statistics plus a ``_global`` summary."""
        total_calls = sum(s["calls"] for s in self._stats.values())
        total_failures = sum(s["failures"] for s in self._stats.values())
        return {
            **{name: dict(stats) for name, stats in self._stats.items()},
            "_global": {
                "total_calls": total_calls,
                "total_failures": total_failures,
                "errors_by_kind": dict(self._errors_by_kind),
            },
        }

    def reset_stats(self) -> None:
        """Reset execution statistics."""
        self._stats.clear()
        self._errors_by_kind.clear()


def _consume_result(task: "asyncio.Future[Any]") -> None:
    """Retrieve a cancelled task's outcome so it is not reported as unhandled."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned tool task finished with: %s", exc)

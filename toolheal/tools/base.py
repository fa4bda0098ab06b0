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

"""Core tool types: descriptors, invocation context and results.

A tool is a named, schema-described unit of work. Its executor is any object
implementing ``ToolExecutorProtocol`` (or a plain callable with the same
signature); concrete tools are selected by name from the registry at
invocation time.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

if TYPE_CHECKING:
    from toolheal.agent.error_classifier import ErrorKind
    from toolheal.core.cancellation import CancellationToken


class ComplexityTier(str, Enum):
    """How much capability a model needs to use a tool well."""

    ESSENTIAL = "essential"
    CORE = "core"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class ModelIdentity:
    """The (family, name) pair of the model that produced a tool call."""

    family: str
    name: str = ""

    @classmethod
    def from_name(cls, model: str) -> "ModelIdentity":
        """Build an identity from a bare model name like ``gemini-pro``."""
        family = model.split("-", 1)[0].split(":", 1)[0].lower() if model else "unknown"
        return cls(family=family or "unknown", name=model)

    def __str__(self) -> str:
        return self.name or self.family


@dataclass(frozen=True)
class InvocationContext:
    """Per-invocation context handed to an executor.

    Owned by the call that created it. Frozen so executors cannot mutate
    it after handoff; ``environment`` is exposed read-only.
    """

    working_directory: str
    session_id: str = "default"
    environment: Mapping[str, str] = field(default_factory=dict)
    model: Optional[ModelIdentity] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))

    def with_model(self, model: Optional[ModelIdentity]) -> "InvocationContext":
        return InvocationContext(
            working_directory=self.working_directory,
            session_id=self.session_id,
            environment=dict(self.environment),
            model=model,
        )


class ToolResult:
    """Outcome of a tool invocation.

    Either a success (text payload plus optional structured data) or a
    failure (ordered list of error messages). ``has_errors``, ``errors`` and
    ``text`` are derived from the stored parts, never stored separately.
    """

    __slots__ = (
        "_parts",
        "_error_messages",
        "data",
        "kind",
        "error",
        "tool_name",
        "execution_time",
        "correlation_id",
        "healed_by",
    )

    def __init__(
        self,
        parts: Optional[List[str]] = None,
        error_messages: Optional[List[str]] = None,
        data: Any = None,
        kind: Optional["ErrorKind"] = None,
        error: Optional[BaseException] = None,
        tool_name: Optional[str] = None,
    ) -> None:
        self._parts: List[str] = list(parts or [])
        self._error_messages: List[str] = list(error_messages or [])
        self.data = data
        self.kind = kind
        self.error = error
        self.tool_name = tool_name
        self.execution_time = 0.0
        self.correlation_id: Optional[str] = None
        self.healed_by: Optional[str] = None

    @classmethod
    def ok(cls, text: str = "", data: Any = None, tool_name: Optional[str] = None) -> "ToolResult":
        return cls(parts=[text] if text else [], data=data, tool_name=tool_name)

    @classmethod
    def fail(
        cls,
        *messages: str,
        kind: Optional["ErrorKind"] = None,
        error: Optional[BaseException] = None,
        tool_name: Optional[str] = None,
    ) -> "ToolResult":
        return cls(error_messages=list(messages), kind=kind, error=error, tool_name=tool_name)

    @property
    def success(self) -> bool:
        return not self._error_messages

    @property
    def has_errors(self) -> bool:
        return bool(self._error_messages)

    @property
    def errors(self) -> List[str]:
        return list(self._error_messages)

    @property
    def text(self) -> str:
        if self._error_messages:
            return "\n".join(self._error_messages)
        return "\n".join(self._parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization/logging."""
        result: Dict[str, Any] = {
            "tool_name": self.tool_name,
            "success": self.success,
            "text": self.text,
            "execution_time": self.execution_time,
            "correlation_id": self.correlation_id,
        }
        if self.has_errors:
            result["errors"] = self.errors
            result["kind"] = self.kind.value if self.kind else None
        if self.data is not None:
            result["data"] = self.data
        if self.healed_by:
            result["healed_by"] = self.healed_by
        return result

    def __repr__(self) -> str:
        status = "ok" if self.success else f"failed({self.kind})"
        return f"ToolResult({self.tool_name!r}, {status})"


ExecutorReturn = Union[ToolResult, str, Dict[str, Any], None]


@runtime_checkable
class ToolExecutorProtocol(Protocol):
    """Capability to run a tool: input + context + cancellation -> result.

    Implementations may be sync or async; they may return a ToolResult,
    a plain string, a dict (treated as structured data) or raise.
    """

    def __call__(
        self,
        input: Any,
        context: InvocationContext,
        token: "CancellationToken",
    ) -> Union[ExecutorReturn, Awaitable[ExecutorReturn]]:
        ...


class BaseTool(ABC):
    """Convenience base class for tools implemented as classes.

    Subclasses set the class attributes and implement ``execute``; the
    instance is itself a valid executor and can build its own descriptor.

    Example:
        class ReadFileTool(BaseTool):
            name = "read_file"
            description = "Read a file"
            category = "filesystem"
            input_schema = {"type": "object", "required": ["path"]}

            async def execute(self, input, context, token):
                ...
    """

    name: str = ""
    description: str = ""
    category: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    complexity_tier: Optional[ComplexityTier] = ComplexityTier.CORE
    input_schema: Optional[Dict[str, Any]] = None
    tool_type: Optional[str] = None

    @abstractmethod
    async def execute(
        self,
        input: Any,
        context: InvocationContext,
        token: "CancellationToken",
    ) -> ExecutorReturn:
        """Run the tool."""

    async def __call__(
        self,
        input: Any,
        context: InvocationContext,
        token: "CancellationToken",
    ) -> ExecutorReturn:
        return await self.execute(input, context, token)

    def to_descriptor(self) -> "ToolDescriptor":
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            executor=self,
            category=self.category,
            tags=frozenset(self.tags),
            complexity_tier=self.complexity_tier,
            input_schema=self.input_schema,
            tool_type=self.tool_type,
        )


@dataclass(frozen=True)
class ToolDescriptor:
    """Immutable tool metadata plus its executor.

    ``category``, ``tags`` and ``complexity_tier`` are optional; their
    absence is reported as a validation warning rather than an error.
    """

    name: str
    description: str
    executor: Optional[Callable[..., Any]]
    category: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    complexity_tier: Optional[ComplexityTier] = None
    input_schema: Optional[Dict[str, Any]] = None
    tool_type: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags or ()))
        if isinstance(self.complexity_tier, str) and not isinstance(
            self.complexity_tier, ComplexityTier
        ):
            object.__setattr__(self, "complexity_tier", ComplexityTier(self.complexity_tier))

    @property
    def is_async(self) -> bool:
        executor = self.executor
        if executor is None:
            return False
        if inspect.iscoroutinefunction(executor):
            return True
        return inspect.iscoroutinefunction(getattr(executor, "__call__", None))

    def summary(self) -> Dict[str, Any]:
        """Metadata without the executor, for listings."""
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tags": sorted(self.tags),
            "complexity_tier": self.complexity_tier.value if self.complexity_tier else None,
            "tool_type": self.tool_type,
        }

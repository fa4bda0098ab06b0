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

"""Tool registry with category and tag indexes.

The registry is an explicitly constructed service object: tests build
isolated instances and the application entry point owns the default one.
It is read-mostly after startup; every operation takes the instance lock
so concurrent readers never observe a half-built index.

Usage:
    registry = ToolRegistry()
    registry.register(ToolDescriptor(name="read_file", description="...", executor=read))

    registry.get("read_file")
    registry.filter(category="filesystem", tags={"read"})
"""

from __future__ import annotations

import fnmatch
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from toolheal.tools.base import ComplexityTier, ToolDescriptor

logger = logging.getLogger(__name__)

# Tools always enabled by the default enablement policy
BASIC_TOOL_KEYWORDS = ("read", "write", "list", "search")

_JSON_TYPES = {
    "object": dict,
    "array": list,
    "string": str,
    "number": (int, float),
    "integer": int,
    "boolean": bool,
}


@dataclass
class ToolValidationReport:
    """Structural validation outcome for a descriptor."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class InputValidationIssue:
    field: str
    message: str
    severity: str = "error"


@dataclass
class InputValidationResult:
    """Outcome of validating an invocation input against a tool."""

    valid: bool
    errors: List[InputValidationIssue] = field(default_factory=list)
    sanitized_input: Any = None

    @property
    def messages(self) -> List[str]:
        return [f"{issue.field}: {issue.message}" for issue in self.errors]


ToolFilter = Callable[[ToolDescriptor], Optional[bool]]


class ToolRegistry:
    """Catalog of tool descriptors indexed by name, category and tag."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        # dict preserves insertion order, which filter() relies on
        self._tools: Dict[str, ToolDescriptor] = {}
        self._by_category: Dict[str, Set[str]] = {}
        self._by_tag: Dict[str, Set[str]] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, descriptor: ToolDescriptor) -> bool:
        """Register a tool descriptor.

        A duplicate name is a no-op with a warning; the existing
        descriptor is kept.

        Returns:
            True if the descriptor was stored
        """
        with self._lock:
            if descriptor.name in self._tools:
                logger.warning(
                    "Tool '%s' is already registered; ignoring duplicate registration",
                    descriptor.name,
                )
                return False

            self._tools[descriptor.name] = descriptor
            if descriptor.category:
                self._by_category.setdefault(descriptor.category, set()).add(descriptor.name)
            for tag in descriptor.tags:
                self._by_tag.setdefault(tag, set()).add(descriptor.name)

        logger.info(
            "Registered tool '%s' (category=%s, tags=%s)",
            descriptor.name,
            descriptor.category,
            sorted(descriptor.tags),
        )
        return True

    def register_tool(
        self,
        name: str,
        executor: Callable[..., Any],
        description: str = "",
        category: Optional[str] = None,
        tags: Iterable[str] = (),
        complexity_tier: Optional[Union[ComplexityTier, str]] = None,
        input_schema: Optional[Dict[str, Any]] = None,
        tool_type: Optional[str] = None,
    ) -> bool:
        """Build a descriptor from fields and register it."""
        return self.register(
            ToolDescriptor(
                name=name,
                description=description,
                executor=executor,
                category=category,
                tags=frozenset(tags),
                complexity_tier=complexity_tier,  # type: ignore[arg-type]
                input_schema=input_schema,
                tool_type=tool_type,
            )
        )

    def unregister(self, name: str) -> bool:
        """Remove a tool and prune now-empty index buckets.

        Returns:
            True if the tool was registered
        """
        with self._lock:
            descriptor = self._tools.pop(name, None)
            if descriptor is None:
                return False

            if descriptor.category:
                self._discard_from_index(self._by_category, descriptor.category, name)
            for tag in descriptor.tags:
                self._discard_from_index(self._by_tag, tag, name)

        logger.info("Unregistered tool '%s'", name)
        return True

    @staticmethod
    def _discard_from_index(index: Dict[str, Set[str]], key: str, name: str) -> None:
        bucket = index.get(key)
        if bucket is None:
            return
        bucket.discard(name)
        if not bucket:
            del index[key]

    def clear(self) -> None:
        with self._lock:
            self._tools.clear()
            self._by_category.clear()
            self._by_tag.clear()
        logger.info("Tool registry cleared")

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[ToolDescriptor]:
        """Get a descriptor by name, or None if not registered."""
        with self._lock:
            return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def get_tools(self) -> List[ToolDescriptor]:
        """All descriptors in registration order."""
        with self._lock:
            return list(self._tools.values())

    def get_categories(self) -> List[str]:
        with self._lock:
            return sorted(self._by_category)

    def get_tags(self) -> List[str]:
        with self._lock:
            return sorted(self._by_tag)

    def filter(
        self,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        complexity_tier: Optional[Union[ComplexityTier, str]] = None,
        name_pattern: Optional[str] = None,
    ) -> List[ToolDescriptor]:
        """Return descriptors matching all given criteria, in registration order.

        Args:
            category: Exact category match
            tags: Every tag listed must be present on the tool
            complexity_tier: Exact tier match
            name_pattern: Shell-style glob (``fnmatch``) on the tool name

        Returns:
            Matching descriptors
        """
        tier = ComplexityTier(complexity_tier) if complexity_tier else None
        wanted_tags = set(tags or ())

        with self._lock:
            candidates: Optional[Set[str]] = None
            if category is not None:
                candidates = set(self._by_category.get(category, set()))
            for tag in wanted_tags:
                tagged = self._by_tag.get(tag, set())
                candidates = set(tagged) if candidates is None else candidates & tagged

            results = []
            for name, descriptor in self._tools.items():
                if candidates is not None and name not in candidates:
                    continue
                if tier is not None and descriptor.complexity_tier != tier:
                    continue
                if name_pattern and not fnmatch.fnmatchcase(name, name_pattern):
                    continue
                results.append(descriptor)
            return results

    def get_enabled_tools(
        self,
        options: Optional[Dict[str, Any]] = None,
        tool_filter: Optional[ToolFilter] = None,
    ) -> List[ToolDescriptor]:
        """Tools enabled for a request.

        A custom filter decides first; when it returns None the default
        policy applies: basic tools are always on, ``debug`` tools need
        ``verbose`` and ``destructive`` tools are hidden in ``dry_run``.
        """
        options = options or {}
        enabled = []
        for descriptor in self.get_tools():
            decision = tool_filter(descriptor) if tool_filter else None
            if decision is None:
                decision = self._is_enabled_by_default(descriptor, options)
            if decision:
                enabled.append(descriptor)
        return enabled

    @staticmethod
    def _is_enabled_by_default(descriptor: ToolDescriptor, options: Dict[str, Any]) -> bool:
        if any(keyword in descriptor.name.lower() for keyword in BASIC_TOOL_KEYWORDS):
            return True
        if "debug" in descriptor.tags and not options.get("verbose"):
            return False
        if options.get("dry_run") and "destructive" in descriptor.tags:
            return False
        return True

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, descriptor: ToolDescriptor) -> ToolValidationReport:
        """Structural check of a descriptor before registration.

        Name, description, executor and input schema are required.
        Missing category, tags or complexity tier only produce warnings.
        A name that is already registered is an error.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if not descriptor.name:
            errors.append("Tool name is required")
        if not descriptor.description:
            errors.append("Tool description is required")
        if descriptor.executor is None:
            errors.append("Tool executor is required")
        elif not callable(descriptor.executor):
            errors.append("Tool executor must be callable")
        if descriptor.input_schema is None:
            errors.append("Tool input schema is required")

        if not descriptor.category:
            warnings.append("Tool category is not set")
        if not descriptor.tags:
            warnings.append("Tool has no tags")
        if descriptor.complexity_tier is None:
            warnings.append("Tool complexity tier is not set")

        if descriptor.name and descriptor.name in self:
            errors.append(f"Tool '{descriptor.name}' is already registered")

        return ToolValidationReport(valid=not errors, errors=errors, warnings=warnings)

    def validate_input(self, name: str, input: Any) -> InputValidationResult:
        """Validate an invocation input against a tool's schema.

        String input is parsed as JSON when the tool declares a schema.
        Only the top-level ``type`` and ``required`` keys are checked.
        """
        descriptor = self.get(name)
        if descriptor is None:
            return InputValidationResult(
                valid=False,
                errors=[InputValidationIssue("tool", f"Tool '{name}' not found")],
            )

        parsed = input
        if descriptor.input_schema and isinstance(input, str):
            try:
                parsed = json.loads(input)
            except json.JSONDecodeError:
                return InputValidationResult(
                    valid=False,
                    errors=[InputValidationIssue("input", "Input must be valid JSON")],
                )

        errors: List[InputValidationIssue] = []
        if parsed is None:
            errors.append(InputValidationIssue("input", "Input is required"))
        elif descriptor.input_schema:
            errors.extend(self._validate_against_schema(parsed, descriptor.input_schema))

        return InputValidationResult(valid=not errors, errors=errors, sanitized_input=parsed)

    @staticmethod
    def _validate_against_schema(
        value: Any, schema: Dict[str, Any]
    ) -> List[InputValidationIssue]:
        errors: List[InputValidationIssue] = []

        expected = schema.get("type")
        python_type = _JSON_TYPES.get(expected) if isinstance(expected, str) else None
        if python_type is not None:
            is_bool = isinstance(value, bool)
            type_ok = isinstance(value, python_type) and (expected == "boolean" or not is_bool)
            if not type_ok:
                errors.append(
                    InputValidationIssue(
                        "type", f"Expected type {expected}, got {type(value).__name__}"
                    )
                )

        required = schema.get("required")
        if isinstance(required, list) and isinstance(value, dict):
            for prop in required:
                if prop not in value:
                    errors.append(
                        InputValidationIssue(prop, f"Required property '{prop}' is missing")
                    )

        return errors

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Counts for dashboards: totals and per category/tier/tag."""
        with self._lock:
            by_tier: Dict[str, int] = {}
            for descriptor in self._tools.values():
                tier = descriptor.complexity_tier.value if descriptor.complexity_tier else "unset"
                by_tier[tier] = by_tier.get(tier, 0) + 1
            return {
                "total_tools": len(self._tools),
                "categories": {k: len(v) for k, v in sorted(self._by_category.items())},
                "tags": {k: len(v) for k, v in sorted(self._by_tag.items())},
                "complexity_tiers": by_tier,
            }

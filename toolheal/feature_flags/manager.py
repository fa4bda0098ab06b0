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

"""Feature flag manager for the healing subsystem.

Key Features:
- Flag resolution with priority-based lookup (env -> settings -> runtime -> default)
- Numeric policy values (timeouts, limits) through the same chain
- Runtime flag updates (hot-reload without restart)
- Dependency checking and audit logging for all flag changes
- Presets for development, production, testing and disabled healing

Example:
    manager = FeatureFlagManager(settings=settings)

    if manager.is_enabled("string_replace_healing_enabled"):
        ...

    manager.set_flag("metacognition_enabled", False)
    limit = manager.get_policy("healing_concurrent_limit")
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from toolheal.config.settings import Settings
from toolheal.feature_flags.flags import (
    HEALING_FLAGS,
    HEALING_POLICY,
    Number,
    get_all_flag_names,
    get_all_policy_names,
    get_flag_dependencies,
    get_flag_metadata,
    get_flags_by_category,
    get_policy_default,
)
from toolheal.feature_flags.resolvers import (
    ChainedFlagResolver,
    EnvironmentFlagResolver,
    RuntimeFlagResolver,
    SettingsFlagResolver,
)

logger = logging.getLogger(__name__)

FlagCallback = Callable[[str, bool], None]

# Oldest entries are dropped once the audit log is full
MAX_AUDIT_ENTRIES = 1000


class FlagChangeAuditLog:
    """Audit log entry for flag changes."""

    def __init__(
        self,
        flag_name: str,
        old_value: Optional[bool],
        new_value: bool,
        source: str,
        timestamp: datetime,
    ) -> None:
        self.flag_name = flag_name
        self.old_value = old_value
        self.new_value = new_value
        self.source = source
        self.timestamp = timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flag_name": self.flag_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
        }


class FeatureFlagManager:
    """Manager for healing flags and policy with resolution, validation and audit logging.

    Design Patterns:
    - Strategy: Pluggable resolvers for different sources
    - Observer: Callbacks for flag changes
    """

    def __init__(
        self,
        resolver: Optional[ChainedFlagResolver] = None,
        settings: Optional[Settings] = None,
        enable_audit_logging: bool = True,
        max_audit_entries: int = MAX_AUDIT_ENTRIES,
    ) -> None:
        """Initialize feature flag manager.

        Args:
            resolver: Custom flag resolver (default: env -> settings -> runtime)
            settings: Settings used by the default resolver chain
            enable_audit_logging: Whether to record all flag changes
            max_audit_entries: Most recent changes kept in the audit log
        """
        self._resolver = resolver or ChainedFlagResolver(settings=settings)
        self._enable_audit_logging = enable_audit_logging

        self._audit_log: Deque[FlagChangeAuditLog] = deque(maxlen=max_audit_entries)
        self._audit_lock = threading.RLock()

        self._callbacks: Dict[str, List[FlagCallback]] = {}
        self._callbacks_lock = threading.RLock()

        self._cache: Dict[str, bool] = {}
        self._cache_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    @classmethod
    def _with_runtime(
        cls,
        flags: Dict[str, bool],
        policy: Optional[Dict[str, Number]] = None,
        settings: Optional[Settings] = None,
    ) -> "FeatureFlagManager":
        resolver = ChainedFlagResolver(
            [
                EnvironmentFlagResolver(),
                SettingsFlagResolver(settings),
                RuntimeFlagResolver(flags=flags, policy=policy),
            ]
        )
        return cls(resolver=resolver)

    @classmethod
    def development(cls, settings: Optional[Settings] = None) -> "FeatureFlagManager":
        """Everything on, detailed telemetry, generous timeouts."""
        return cls._with_runtime(
            {
                "string_replace_healing_enabled": True,
                "patch_healing_enabled": True,
                "healing_detailed_telemetry": True,
                "healing_performance_metrics": True,
            },
            {"string_replace_healing_timeout": 30.0, "patch_healing_timeout": 30.0},
            settings,
        )

    @classmethod
    def production(cls, settings: Optional[Settings] = None) -> "FeatureFlagManager":
        """Healing on, quieter telemetry, lower concurrency."""
        return cls._with_runtime(
            {
                "string_replace_healing_enabled": True,
                "patch_healing_enabled": True,
                "healing_detailed_telemetry": False,
                "healing_performance_metrics": True,
                "healing_context_truncation": True,
            },
            {"healing_concurrent_limit": 2},
            settings,
        )

    @classmethod
    def testing(cls, settings: Optional[Settings] = None) -> "FeatureFlagManager":
        """Short timeouts and no concurrency."""
        return cls._with_runtime(
            {
                "string_replace_healing_enabled": True,
                "patch_healing_enabled": True,
                "healing_detailed_telemetry": False,
                "healing_performance_metrics": False,
            },
            {
                "string_replace_healing_timeout": 5.0,
                "patch_healing_timeout": 5.0,
                "healing_concurrent_limit": 1,
            },
            settings,
        )

    @classmethod
    def disabled(cls, settings: Optional[Settings] = None) -> "FeatureFlagManager":
        """All healing and model fixes off."""
        return cls._with_runtime(
            {
                "healing_enabled": False,
                "string_replace_healing_enabled": False,
                "patch_healing_enabled": False,
                "gemini_unescape_fix": False,
                "claude_formatting_fix": False,
                "gpt_context_fix": False,
                "healing_detailed_telemetry": False,
                "healing_performance_metrics": False,
            },
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    @staticmethod
    def _check_flag_name(flag_name: str) -> None:
        if flag_name not in HEALING_FLAGS:
            raise ValueError(
                f"Unknown feature flag: {flag_name}. "
                f"Valid flags: {', '.join(get_all_flag_names())}"
            )

    def is_enabled(self, flag_name: str, use_cache: bool = True) -> bool:
        """Check if a feature flag is enabled.

        A flag whose dependencies are disabled reports False.

        Raises:
            ValueError: If flag name is not recognized
        """
        self._check_flag_name(flag_name)

        if use_cache:
            with self._cache_lock:
                if flag_name in self._cache:
                    return self._cache[flag_name]

        value = self._resolver.resolve(flag_name)
        if value is None:
            value = bool(HEALING_FLAGS[flag_name].get("default", False))

        if value:
            unmet = [
                dep
                for dep in get_flag_dependencies(flag_name)
                if not self.is_enabled(dep, use_cache)
            ]
            if unmet:
                logger.debug(
                    "Flag %s is enabled but dependencies are not satisfied: %s",
                    flag_name,
                    ", ".join(unmet),
                )
                value = False

        if use_cache:
            with self._cache_lock:
                self._cache[flag_name] = value

        return bool(value)

    def set_flag(self, flag_name: str, value: bool, source: str = "api") -> bool:
        """Set a feature flag value at runtime.

        Raises:
            ValueError: If flag name is not recognized or dependencies not satisfied
        """
        self._check_flag_name(flag_name)

        if value:
            missing_deps = [
                dep for dep in get_flag_dependencies(flag_name) if not self.is_enabled(dep)
            ]
            if missing_deps:
                raise ValueError(
                    f"Cannot enable {flag_name}: dependencies not satisfied: "
                    f"{', '.join(missing_deps)}"
                )

        old_value = self.is_enabled(flag_name)

        if not self._resolver.set(flag_name, value):
            logger.warning("Failed to set flag %s=%s", flag_name, value)
            return False

        # Dependents may have cached a stale value
        self.clear_cache()

        if self._enable_audit_logging:
            with self._audit_lock:
                self._audit_log.append(
                    FlagChangeAuditLog(
                        flag_name=flag_name,
                        old_value=old_value,
                        new_value=value,
                        source=source,
                        timestamp=datetime.now(timezone.utc),
                    )
                )

        self._trigger_callbacks(flag_name, value)

        logger.info("Feature flag %s set to %s (source: %s)", flag_name, value, source)
        return True

    def reset_flag(self, flag_name: str) -> bool:
        """Reset a flag to its default value."""
        flag_def = HEALING_FLAGS.get(flag_name)
        if not flag_def:
            return False
        return self.set_flag(flag_name, bool(flag_def.get("default", False)), source="reset")

    def get_all_flags(self, include_disabled: bool = True) -> Dict[str, bool]:
        flags = {}
        for flag_name in get_all_flag_names():
            value = self.is_enabled(flag_name)
            if include_disabled or value:
                flags[flag_name] = value
        return flags

    def get_flag_metadata(self, flag_name: str) -> Dict[str, Any]:
        return get_flag_metadata(flag_name)

    def get_flags_by_category(self, category: str) -> Dict[str, bool]:
        return {name: self.is_enabled(name) for name in get_flags_by_category(category)}

    def clear_cache(self) -> None:
        """Forces the next is_enabled() call to re-resolve from sources."""
        with self._cache_lock:
            self._cache.clear()

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def get_policy(self, name: str) -> Number:
        """Resolve a numeric policy value.

        Values that are not positive fall back to the default. Integer
        policies (limits, attempt counts) are returned as ``int``.

        Raises:
            ValueError: If the policy name is not recognized
        """
        default = get_policy_default(name)
        value = self._resolver.resolve_policy(name)
        if value is None:
            return default
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.warning("Invalid value %r for policy %s; using default", value, name)
            return default
        if number <= 0:
            logger.warning("Non-positive value %s for policy %s; using default", number, name)
            return default
        if isinstance(default, int):
            return max(1, int(number))
        return number

    def set_policy(self, name: str, value: Number) -> bool:
        get_policy_default(name)
        if value <= 0:
            raise ValueError(f"Policy {name} must be positive, got {value}")
        success = self._resolver.set_policy(name, value)
        if success:
            logger.info("Healing policy %s set to %s", name, value)
        return success

    def get_all_policy(self) -> Dict[str, Number]:
        return {name: self.get_policy(name) for name in get_all_policy_names()}

    # ------------------------------------------------------------------
    # Callbacks and audit
    # ------------------------------------------------------------------

    def on_flag_changed(self, flag_name: str, callback: FlagCallback) -> None:
        """Register a callback for flag changes.

        Args:
            flag_name: Name of the flag (or "*" for all flags)
            callback: Called with (flag_name, value)
        """
        with self._callbacks_lock:
            self._callbacks.setdefault(flag_name, []).append(callback)

    def _trigger_callbacks(self, flag_name: str, value: bool) -> None:
        with self._callbacks_lock:
            callbacks = list(self._callbacks.get(flag_name, [])) + list(
                self._callbacks.get("*", [])
            )
        for callback in callbacks:
            try:
                callback(flag_name, value)
            except Exception as e:
                logger.error("Flag change callback failed for %s: %s", flag_name, e)

    def get_audit_log(
        self, flag_name: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Audit log entries, newest first."""
        with self._audit_lock:
            if flag_name:
                entries = [e for e in self._audit_log if e.flag_name == flag_name]
            else:
                entries = list(self._audit_log)

        entries = list(reversed(entries))[:limit]
        return [e.to_dict() for e in entries]

    def clear_audit_log(self) -> None:
        with self._audit_lock:
            self._audit_log.clear()

    # ------------------------------------------------------------------
    # State transfer
    # ------------------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        """Export current flag and policy values."""
        with self._audit_lock:
            audit_size = len(self._audit_log)
        return {
            "flags": self.get_all_flags(),
            "policy": self.get_all_policy(),
            "audit_log_size": audit_size,
        }

    def import_state(self, state: Dict[str, Any]) -> None:
        """Apply flag and policy values from export_state().

        Prerequisite flags are applied before their dependents; entries that
        fail validation are logged and skipped.
        """
        flags: Dict[str, bool] = state.get("flags", {})
        known = [name for name in flags if name in HEALING_FLAGS]
        for flag_name in sorted(known, key=lambda name: len(get_flag_dependencies(name))):
            try:
                self.set_flag(flag_name, bool(flags[flag_name]), source="import")
            except ValueError as e:
                logger.warning("Failed to import flag %s: %s", flag_name, e)

        for name, value in state.get("policy", {}).items():
            if name not in HEALING_POLICY:
                continue
            try:
                self.set_policy(name, value)
            except (TypeError, ValueError) as e:
                logger.warning("Failed to import policy %s: %s", name, e)

        logger.info("Imported %d flags", len(flags))

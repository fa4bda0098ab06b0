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

"""Flag and policy resolution for the feature flag system.

Resolution pipeline with priority-based lookup:
1. Environment variables (TOOLHEAL_FEATURE_<NAME>, TOOLHEAL_POLICY_<NAME>)
2. Settings (settings.feature_flags / settings.healing_policy)
3. Runtime API (manager.set_flag() / manager.set_policy())
4. Default value
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Union

from toolheal.config.settings import Settings

logger = logging.getLogger(__name__)

Number = Union[int, float]


class FlagResolver(ABC):
    """Abstract base for flag resolution strategies.

    Each resolver reads one source; resolvers are chained for fallback.
    A resolver returns None when its source has no opinion.
    """

    @abstractmethod
    def resolve(self, flag_name: str) -> Optional[bool]:
        """Resolve a boolean flag, or None if not set in this source."""

    @abstractmethod
    def set(self, flag_name: str, value: bool) -> bool:
        """Set a flag value. Returns True if this source accepted it."""

    def resolve_policy(self, name: str) -> Optional[Number]:
        """Resolve a numeric policy value, or None if not set in this source."""
        return None

    def set_policy(self, name: str, value: Number) -> bool:
        return False


class EnvironmentFlagResolver(FlagResolver):
    """Resolve flags and policy from environment variables.

    Format: TOOLHEAL_FEATURE_<FLAG_NAME>=true, TOOLHEAL_POLICY_<NAME>=2.5
    Example: TOOLHEAL_FEATURE_METACOGNITION_ENABLED=false

    Read-only: the environment is owned by the process launcher.
    """

    FLAG_PREFIX = "TOOLHEAL_FEATURE_"
    POLICY_PREFIX = "TOOLHEAL_POLICY_"

    def resolve(self, flag_name: str) -> Optional[bool]:
        env_value = os.getenv(f"{self.FLAG_PREFIX}{flag_name.upper()}")
        if env_value is None:
            return None
        return self._parse_bool(env_value)

    def set(self, flag_name: str, value: bool) -> bool:
        logger.debug("Environment resolver is read-only; not setting %s", flag_name)
        return False

    def resolve_policy(self, name: str) -> Optional[Number]:
        env_name = f"{self.POLICY_PREFIX}{name.upper()}"
        env_value = os.getenv(env_name)
        if env_value is None:
            return None
        try:
            return float(env_value)
        except ValueError:
            logger.warning("Ignoring non-numeric %s=%r", env_name, env_value)
            return None

    @staticmethod
    def _parse_bool(value: str) -> bool:
        """Accepts: true, yes, 1, on, enabled (case-insensitive)."""
        return value.strip().lower() in ("true", "yes", "1", "on", "enabled")


class SettingsFlagResolver(FlagResolver):
    """Resolve flags from Settings configuration.

    Settings format: settings.feature_flags = {"metacognition_enabled": False}
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()

    def resolve(self, flag_name: str) -> Optional[bool]:
        feature_flags = getattr(self._settings, "feature_flags", None)
        if not isinstance(feature_flags, dict):
            return None
        value = feature_flags.get(flag_name)
        if value is None:
            return None
        return bool(value)

    def set(self, flag_name: str, value: bool) -> bool:
        """Set flag in settings (in memory only)."""
        self._settings.feature_flags[flag_name] = value
        logger.info("Set feature flag %s=%s in settings", flag_name, value)
        return True

    def resolve_policy(self, name: str) -> Optional[Number]:
        policy = getattr(self._settings, "healing_policy", None)
        if not isinstance(policy, dict):
            return None
        return policy.get(name)

    def set_policy(self, name: str, value: Number) -> bool:
        self._settings.healing_policy[name] = value
        logger.info("Set healing policy %s=%s in settings", name, value)
        return True


class RuntimeFlagResolver(FlagResolver):
    """Resolve flags from runtime storage (in-memory).

    Changes are lost on process restart.
    """

    def __init__(
        self,
        flags: Optional[Dict[str, bool]] = None,
        policy: Optional[Dict[str, Number]] = None,
    ) -> None:
        self._flags: Dict[str, bool] = dict(flags or {})
        self._policy: Dict[str, Number] = dict(policy or {})

    def resolve(self, flag_name: str) -> Optional[bool]:
        return self._flags.get(flag_name)

    def set(self, flag_name: str, value: bool) -> bool:
        self._flags[flag_name] = value
        logger.info("Set feature flag %s=%s in runtime storage", flag_name, value)
        return True

    def resolve_policy(self, name: str) -> Optional[Number]:
        return self._policy.get(name)

    def set_policy(self, name: str, value: Number) -> bool:
        self._policy[name] = value
        logger.info("Set healing policy %s=%s in runtime storage", name, value)
        return True

    def clear(self, flag_name: str) -> None:
        self._flags.pop(flag_name, None)

    def get_all(self) -> Dict[str, bool]:
        return self._flags.copy()

    def reset(self) -> None:
        """Reset all runtime flags and policy values."""
        self._flags.clear()
        self._policy.clear()
        logger.info("Reset all runtime feature flags")


class ChainedFlagResolver(FlagResolver):
    """Chain multiple resolvers with fallback priority.

    Tries each resolver in order until one returns a non-None value.

    Priority Order (default):
    1. EnvironmentFlagResolver
    2. SettingsFlagResolver
    3. RuntimeFlagResolver
    """

    def __init__(
        self,
        resolvers: Optional[List[FlagResolver]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if resolvers is None:
            resolvers = [
                EnvironmentFlagResolver(),
                SettingsFlagResolver(settings),
                RuntimeFlagResolver(),
            ]
        self._resolvers = resolvers

    @property
    def resolvers(self) -> List[FlagResolver]:
        return list(self._resolvers)

    def resolve(self, flag_name: str) -> Optional[bool]:
        for resolver in self._resolvers:
            try:
                value = resolver.resolve(flag_name)
            except Exception as e:
                logger.warning(
                    "Resolver %s failed for %s: %s", resolver.__class__.__name__, flag_name, e
                )
                continue
            if value is not None:
                logger.debug(
                    "Flag %s resolved to %s by %s", flag_name, value, resolver.__class__.__name__
                )
                return value
        return None

    def set(self, flag_name: str, value: bool) -> bool:
        """Set flag in all writable resolvers.

        Returns:
            True if at least one resolver accepted the value
        """
        success = False
        for resolver in self._resolvers:
            try:
                if resolver.set(flag_name, value):
                    success = True
            except Exception as e:
                logger.warning(
                    "Failed to set %s in %s: %s", flag_name, resolver.__class__.__name__, e
                )
        return success

    def resolve_policy(self, name: str) -> Optional[Number]:
        for resolver in self._resolvers:
            try:
                value = resolver.resolve_policy(name)
            except Exception as e:
                logger.warning(
                    "Resolver %s failed for policy %s: %s", resolver.__class__.__name__, name, e
                )
                continue
            if value is not None:
                return value
        return None

    def set_policy(self, name: str, value: Number) -> bool:
        success = False
        for resolver in self._resolvers:
            try:
                if resolver.set_policy(name, value):
                    success = True
            except Exception as e:
                logger.warning(
                    "Failed to set policy %s in %s: %s", name, resolver.__class__.__name__, e
                )
        return success

    def add_resolver(self, resolver: FlagResolver, priority: int = -1) -> None:
        """Add resolver to chain.

        Args:
            resolver: Resolver instance to add
            priority: Position in chain (-1 = append, 0 = prepend)
        """
        if priority == -1:
            self._resolvers.append(resolver)
        else:
            self._resolvers.insert(priority, resolver)

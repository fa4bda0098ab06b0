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

"""Application settings.

Values come from (highest priority first) constructor arguments,
``TOOLHEAL_*`` environment variables, an optional ``.env`` file and the
field defaults. A YAML file can layer further overrides on top with
``Settings.load_overrides()``.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolheal.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Main toolheal settings."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLHEAL_",
        env_file=".env" if not os.getenv("TOOLHEAL_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Feature flags and numeric healing policy (name -> value overrides)
    feature_flags: Dict[str, bool] = Field(default_factory=dict)
    healing_policy: Dict[str, float] = Field(default_factory=dict)

    # Healing cache / correction context
    healing_cache_max_size: int = 1000
    healing_context_max_chars: int = 2000

    # Correction endpoint (OpenAI-compatible chat completions)
    correction_base_url: Optional[str] = None
    correction_api_key: Optional[str] = None
    correction_model: str = "gpt-4o-mini"
    correction_temperature: float = Field(0.1, ge=0.0, le=2.0)
    correction_max_tokens: int = Field(2000, gt=0)

    # Invocation defaults
    default_working_directory: Optional[str] = None
    default_session_id: str = "default"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}, got {v}")
        return level

    @field_validator("healing_cache_max_size", "healing_context_max_chars")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    def load_overrides(self, path: Union[str, Path]) -> "Settings":
        """Return a copy of these settings with values from a YAML file applied.

        Mapping values (``feature_flags``, ``healing_policy``) are merged
        key by key; everything else is replaced.

        Raises:
            ConfigurationError: If the file is missing or not a YAML mapping
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load settings overrides from {path}: {e}",
                config_key=str(path),
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Settings overrides in {path} must be a mapping", config_key=str(path)
            )

        merged: Dict[str, Any] = self.model_dump()
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value

        logger.info("Loaded %d settings overrides from %s", len(data), path)
        return Settings(**merged)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the process-wide settings, creating them on first use.

    Intended for application entry points; library code takes an
    injected ``Settings`` instead.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the process-wide settings (tests, reconfiguration)."""
    global _settings
    _settings = None

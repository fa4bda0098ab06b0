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

"""Tests for Settings and YAML overrides."""

import pytest
from pydantic import ValidationError

from toolheal.config.settings import Settings, get_settings, reset_settings
from toolheal.core.errors import ConfigurationError


class TestSettingsDefaults:
    """Tests for field defaults and validation."""

    def test_defaults(self):
        """Test the documented defaults."""
        settings = Settings()

        assert settings.log_level == "INFO"
        assert settings.healing_cache_max_size == 1000
        assert settings.healing_context_max_chars == 2000
        assert settings.correction_base_url is None
        assert settings.feature_flags == {}

    def test_log_level_is_uppercased(self):
        """Test log levels are case-insensitive."""
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self):
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            Settings(log_level="verbose")

    def test_cache_size_must_be_positive(self):
        """Test a zero cache size is rejected."""
        with pytest.raises(ValidationError):
            Settings(healing_cache_max_size=0)

    def test_environment_variables(self, monkeypatch):
        """Test TOOLHEAL_ prefixed variables are read."""
        monkeypatch.setenv("TOOLHEAL_HEALING_CACHE_MAX_SIZE", "50")
        monkeypatch.setenv("TOOLHEAL_CORRECTION_BASE_URL", "http://localhost:8000/v1")

        settings = Settings()

        assert settings.healing_cache_max_size == 50
        assert settings.correction_base_url == "http://localhost:8000/v1"


class TestLoadOverrides:
    """Tests for YAML override files."""

    def test_mappings_are_merged(self, tmp_path):
        """Test flag mappings merge key by key and scalars replace."""
        path = tmp_path / "toolheal.yaml"
        path.write_text(
            "log_level: warning\n"
            "feature_flags:\n"
            "  metacognition_enabled: false\n"
        )
        base = Settings(feature_flags={"healing_cache_enabled": True})

        settings = base.load_overrides(path)

        assert settings.log_level == "WARNING"
        assert settings.feature_flags == {
            "healing_cache_enabled": True,
            "metacognition_enabled": False,
        }
        assert base.log_level == "INFO"

    def test_empty_file_changes_nothing(self, tmp_path):
        """Test an empty YAML file is treated as no overrides."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert Settings().load_overrides(path).log_level == "INFO"

    def test_missing_file(self, tmp_path):
        """Test a missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Failed to load"):
            Settings().load_overrides(tmp_path / "missing.yaml")

    def test_non_mapping_file(self, tmp_path):
        """Test a YAML list is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="must be a mapping"):
            Settings().load_overrides(path)


class TestGlobalSettings:
    """Tests for the process-wide settings accessor."""

    def test_get_settings_is_cached(self):
        """Test repeated calls return one instance until reset."""
        first = get_settings()

        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first

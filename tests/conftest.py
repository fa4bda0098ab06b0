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

"""Shared pytest fixtures and configuration."""

import os

import pytest

from toolheal.config.settings import reset_settings


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Isolate tests from environment variables and .env files.

    Flag and policy overrides from the developer's shell would otherwise
    change healing behavior under test.
    """
    monkeypatch.setenv("TOOLHEAL_SKIP_ENV_FILE", "1")

    for var in list(os.environ):
        if var.startswith(("TOOLHEAL_FEATURE_", "TOOLHEAL_POLICY_", "TOOLHEAL_TIMEOUT_")):
            monkeypatch.delenv(var, raising=False)
    for var in ("TOOLHEAL_CORRECTION_BASE_URL", "TOOLHEAL_CORRECTION_API_KEY"):
        monkeypatch.delenv(var, raising=False)

    reset_settings()
    yield
    reset_settings()

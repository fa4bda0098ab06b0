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

"""Pytest fixtures for unit tests."""

import logging

import pytest

from toolheal.config.settings import Settings
from toolheal.feature_flags import FeatureFlagManager, RuntimeFlagResolver
from toolheal.feature_flags.resolvers import ChainedFlagResolver


@pytest.fixture(autouse=True)
def reset_toolheal_logger():
    """Reset the toolheal logger to ensure log propagation works for caplog.

    configure_logging() may have attached handlers or changed the level in
    a previous test.
    """
    logger = logging.getLogger("toolheal")

    original_handlers = logger.handlers.copy()
    original_level = logger.level
    original_propagate = logger.propagate

    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.DEBUG)

    yield

    logger.handlers = original_handlers
    logger.level = original_level
    logger.propagate = original_propagate


@pytest.fixture
def settings():
    """Settings with defaults only."""
    return Settings()


@pytest.fixture
def runtime_resolver():
    """In-memory resolver tests can write flags and policy into."""
    return RuntimeFlagResolver()


@pytest.fixture
def flags(runtime_resolver):
    """Flag manager resolving only from runtime storage and defaults."""
    return FeatureFlagManager(resolver=ChainedFlagResolver([runtime_resolver]))

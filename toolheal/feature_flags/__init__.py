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

"""Feature flags and numeric policy for the healing subsystem.

Key Features:
- Environment-based resolution (TOOLHEAL_FEATURE_*, TOOLHEAL_POLICY_* env vars)
- Settings integration (settings.feature_flags, settings.healing_policy)
- Runtime updates (hot-reload without restart)
- Dependency checking and audit logging

Example:
    from toolheal.feature_flags import FeatureFlagManager

    manager = FeatureFlagManager.production()
    if manager.is_enabled("patch_healing_enabled"):
        ...
"""

from toolheal.feature_flags.flags import HEALING_FLAGS, HEALING_POLICY
from toolheal.feature_flags.manager import FeatureFlagManager
from toolheal.feature_flags.resolvers import (
    ChainedFlagResolver,
    EnvironmentFlagResolver,
    FlagResolver,
    RuntimeFlagResolver,
    SettingsFlagResolver,
)

__all__ = [
    "HEALING_FLAGS",
    "HEALING_POLICY",
    "FeatureFlagManager",
    "FlagResolver",
    "EnvironmentFlagResolver",
    "SettingsFlagResolver",
    "RuntimeFlagResolver",
    "ChainedFlagResolver",
]

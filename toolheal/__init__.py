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

"""
toolheal - Tool invocation with self-healing for LLM-driven agents.

Catalogs callable tools, runs them under cancellation and timeout control,
and repairs "target text not found" failures of string replace and patch
tools before surfacing an error.

Example:
    from toolheal import ToolExecutor, ToolRegistry, HealingIntegration

    registry = ToolRegistry()
    registry.register_tool("edit_file", edit_file, "Replace text in a file",
                           tool_type="string_replace")
    executor = ToolExecutor(registry)
    healing = HealingIntegration()
    result = await healing.invoke_with_healing(executor, "edit_file", params)
"""

__version__ = "0.1.0"
__author__ = "Vijaykumar Singh"
__email__ = "singhvjd@gmail.com"
__license__ = "Apache-2.0"

from toolheal.agent import ErrorKind, ToolExecutor, ValidationMode
from toolheal.config import Settings
from toolheal.core import CancellationToken
from toolheal.feature_flags import FeatureFlagManager
from toolheal.healing import HealingEngine, HealingIntegration, HealingResult
from toolheal.tools import (
    InvocationContext,
    ModelIdentity,
    ToolDescriptor,
    ToolRegistry,
    ToolResult,
)

__all__ = [
    "ErrorKind",
    "ToolExecutor",
    "ValidationMode",
    "Settings",
    "CancellationToken",
    "FeatureFlagManager",
    "HealingEngine",
    "HealingIntegration",
    "HealingResult",
    "InvocationContext",
    "ModelIdentity",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResult",
]

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

"""Core primitives: error hierarchy and cancellation."""

from toolheal.core.cancellation import CancellationToken
from toolheal.core.errors import (
    CancellationRequestedError,
    ConfigurationError,
    ContextError,
    ErrorCategory,
    ErrorHandler,
    ErrorInfo,
    ErrorSeverity,
    HealedError,
    NoMatchError,
    ToolError,
    ToolExecutionError,
    ToolhealError,
    ToolNotFoundError,
    ToolPermissionError,
    ToolTimeoutError,
    ToolValidationError,
    categorize_exception,
)

__all__ = [
    "CancellationToken",
    "CancellationRequestedError",
    "ConfigurationError",
    "ContextError",
    "ErrorCategory",
    "ErrorHandler",
    "ErrorInfo",
    "ErrorSeverity",
    "HealedError",
    "NoMatchError",
    "ToolError",
    "ToolExecutionError",
    "ToolhealError",
    "ToolNotFoundError",
    "ToolPermissionError",
    "ToolTimeoutError",
    "ToolValidationError",
    "categorize_exception",
]

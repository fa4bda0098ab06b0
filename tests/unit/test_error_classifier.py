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

"""Tests for ToolErrorClassifier."""

import asyncio

import pytest

from toolheal.agent.error_classifier import ErrorKind, ToolErrorClassifier, get_error_classifier
from toolheal.core.errors import (
    CancellationRequestedError,
    ContextError,
    NoMatchError,
    ToolNotFoundError,
    ToolPermissionError,
    ToolTimeoutError,
    ToolValidationError,
)


@pytest.fixture
def classifier():
    return ToolErrorClassifier()


class TestClassifyExceptions:
    """Tests for typed exception classification."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (NoMatchError("x"), ErrorKind.NO_MATCH),
            (ToolNotFoundError("x"), ErrorKind.TOOL_NOT_FOUND),
            (ToolTimeoutError("x", 1.0), ErrorKind.EXECUTION_TIMEOUT),
            (asyncio.TimeoutError(), ErrorKind.EXECUTION_TIMEOUT),
            (ToolValidationError("x"), ErrorKind.INVALID_INPUT),
            (ToolPermissionError("x"), ErrorKind.PERMISSION_DENIED),
            (PermissionError("x"), ErrorKind.PERMISSION_DENIED),
            (CancellationRequestedError(), ErrorKind.CANCELLATION_REQUESTED),
            (ContextError("x"), ErrorKind.CONTEXT_ERROR),
        ],
    )
    def test_typed_errors(self, classifier, error, kind):
        """Test exception types map directly to kinds."""
        assert classifier.classify(error) == kind

    def test_untyped_exception_falls_back_to_message(self, classifier):
        """Test a plain exception is classified by its message."""
        assert classifier.classify(RuntimeError("Permission denied: /etc")) == (
            ErrorKind.PERMISSION_DENIED
        )

    def test_none_is_unknown(self, classifier):
        """Test a missing error is UNKNOWN."""
        assert classifier.classify(None) == ErrorKind.UNKNOWN


class TestClassifyMessages:
    """Tests for message-based classification."""

    @pytest.mark.parametrize(
        "message,kind",
        [
            ("No match found for 'foo' in a.py", ErrorKind.NO_MATCH),
            ("Context mismatch at line 4", ErrorKind.NO_MATCH),
            ("Tool 'grep' not found", ErrorKind.TOOL_NOT_FOUND),
            ("unknown tool requested", ErrorKind.TOOL_NOT_FOUND),
            ("operation timed out", ErrorKind.EXECUTION_TIMEOUT),
            ("EACCES: cannot open", ErrorKind.PERMISSION_DENIED),
            ("request was aborted", ErrorKind.CANCELLATION_REQUESTED),
            ("Input must be valid JSON", ErrorKind.INVALID_INPUT),
            ("working directory does not exist", ErrorKind.CONTEXT_ERROR),
            ("segfault", ErrorKind.UNKNOWN),
        ],
    )
    def test_message_patterns(self, classifier, message, kind):
        """Test case-insensitive message substrings."""
        assert classifier.classify(message) == kind


class TestIsHealable:
    """Tests for the healability gate."""

    def test_no_match_on_string_replace_is_healable(self):
        """Test NO_MATCH for string replace tools is healable."""
        assert ToolErrorClassifier.is_healable(ErrorKind.NO_MATCH, "string_replace") is True
        assert ToolErrorClassifier.is_healable(ErrorKind.NO_MATCH, "patch_apply") is True

    def test_other_kinds_or_tools_are_not_healable(self):
        """Test nothing else is handed to healing."""
        assert ToolErrorClassifier.is_healable(ErrorKind.EXECUTION_TIMEOUT, "string_replace") is False
        assert ToolErrorClassifier.is_healable(ErrorKind.NO_MATCH, "shell") is False
        assert ToolErrorClassifier.is_healable(ErrorKind.NO_MATCH, None) is False


def test_shared_classifier_is_singleton():
    """Test get_error_classifier returns one instance."""
    assert get_error_classifier() is get_error_classifier()

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

"""Text helpers shared by healing strategies.

Occurrence counting, line-ending handling, whitespace normalization and
context windows for the correction endpoint.
"""

import re
from typing import List

_TRAILING_BLANKS_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_INLINE_WS_RE = re.compile(r"[ \t]+")

CONTEXT_BEFORE_MARKER = "[... content before ...]"
CONTEXT_AFTER_MARKER = "[... content after ...]"
CONTEXT_TRUNCATED_MARKER = "[... content truncated ...]"


def count_occurrences(content: str, needle: str) -> int:
    """Non-overlapping occurrences of needle in content (0 for an empty needle)."""
    if not needle:
        return 0
    return content.count(needle)


def detect_line_ending(content: str) -> str:
    """Dominant line ending of content: ``\\r\\n``, ``\\r`` or ``\\n``."""
    crlf = content.count("\r\n")
    lf = content.count("\n") - crlf
    cr = content.count("\r") - crlf
    if crlf > lf and crlf > cr:
        return "\r\n"
    if cr > lf:
        return "\r"
    return "\n"


def normalize_line_endings(text: str, eol: str = "\n") -> str:
    """Convert every line break in text to eol."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    if eol != "\n":
        normalized = normalized.replace("\n", eol)
    return normalized


def match_and_count(content: str, needle: str) -> int:
    """Occurrences of needle in content, ignoring line-ending differences."""
    return count_occurrences(normalize_line_endings(content), normalize_line_endings(needle))


def strip_trailing_whitespace(text: str) -> str:
    """Trim trailing whitespace on every line and drop trailing blank lines."""
    return _TRAILING_BLANKS_RE.sub("", normalize_line_endings(text)).rstrip("\n")


def normalize_whitespace(text: str) -> str:
    """Generic whitespace normalization used by pattern matching.

    Collapses runs of spaces and tabs to one space, trims trailing
    whitespace on every line and strips trailing blank lines. Idempotent.
    """
    text = normalize_line_endings(text)
    text = _INLINE_WS_RE.sub(" ", text)
    return strip_trailing_whitespace(text)


def find_whitespace_insensitive(content: str, text: str, keep_indent: bool = False) -> List[str]:
    """Exact segments of content equal to text up to whitespace differences.

    Tokens of text must appear in order, separated by any run of
    whitespace (including line breaks) in content. With ``keep_indent`` a
    match starting a line also takes that line's indentation.
    """
    tokens = text.split()
    if not tokens:
        return []
    pattern = r"\s+".join(re.escape(token) for token in tokens)
    if keep_indent:
        pattern = r"(?:^[ \t]*)?" + pattern
    return [m.group(0) for m in re.finditer(pattern, content, re.MULTILINE)]


def unescape_over_escaped(text: str) -> str:
    r"""Undo literal escape sequences emitted in place of real characters.

    A run of backslashes before n, t, r, a quote, a backtick, a backslash
    or a real newline collapses to the intended character, so ``\\n``
    becomes a line break and ``\"`` becomes ``"``.
    """
    replacements = {"n": "\n", "t": "\t", "r": "\r", "\n": "\n"}

    def _replace(match: "re.Match[str]") -> str:
        char = match.group(1)
        return replacements.get(char, char)

    return re.sub(r"\\+(n|t|r|'|\"|`|\\|\n)", _replace, text)


def create_healing_context(
    file_content: str, snippet: str, max_chars: int = 2000
) -> str:
    """Window of file_content to show the correction endpoint.

    Content that fits is returned whole. Otherwise the window is centred on
    the snippet when it is found, or made of the head and tail of the file
    when it is not; cut edges are marked.
    """
    if len(file_content) <= max_chars:
        return file_content

    index = file_content.find(snippet) if snippet else -1
    if index == -1:
        half = max_chars // 2
        return (
            f"{file_content[:half]}\n\n{CONTEXT_TRUNCATED_MARKER}\n\n{file_content[-half:]}"
        )

    radius = max(0, (max_chars - len(snippet)) // 2)
    start = max(0, index - radius)
    end = min(len(file_content), index + len(snippet) + radius)

    context = file_content[start:end]
    if start > 0:
        context = f"{CONTEXT_BEFORE_MARKER}\n\n{context}"
    if end < len(file_content):
        context = f"{context}\n\n{CONTEXT_AFTER_MARKER}"
    return context

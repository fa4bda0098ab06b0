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

"""Unified diff application with LLM-assisted healing.

``apply_patch`` applies hunks with exact context matching. When it fails
and patch healing is enabled, ``PatchHealer`` asks the correction endpoint
for a corrected patch and tries again, within the patch healing timeout
and attempt policy.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from toolheal.core.cancellation import CancellationToken
from toolheal.core.errors import HealedError, NoMatchError
from toolheal.feature_flags.manager import FeatureFlagManager
from toolheal.healing.concurrency import ConcurrencyLimiter
from toolheal.healing.correction import (
    PATCH_HEALING_SCHEMA,
    CorrectionEndpoint,
    build_patch_messages,
    parse_json_response,
)
from toolheal.healing.metrics import HealingMetrics
from toolheal.healing.types import HealingResult, HealingStrategy
from toolheal.tools.base import ModelIdentity

logger = logging.getLogger(__name__)

_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_FILE_HEADER_RE = re.compile(r"^(?:\+\+\+|---) (\S+)")

PREVIEW_MAX_LINES = 50


class PatchApplyError(NoMatchError):
    """A patch could not be parsed or its context did not match."""

    def __init__(self, message: str, patch: str = "", file_content: str = "", **kwargs: Any):
        super().__init__(message, search_string=patch, file_content=file_content, **kwargs)
        self.patch = patch


@dataclass
class Hunk:
    old_start: int
    lines: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class FilePatch:
    filename: str
    hunks: List[Hunk] = field(default_factory=list)
    additions: int = 0
    deletions: int = 0


@dataclass
class PatchApplyResult:
    content: str
    commit: Dict[str, Any]
    was_healed: bool = False
    healed_patch: Optional[str] = None


def parse_unified_diff(patch: str) -> List[FilePatch]:
    """Split a unified diff into per-file hunks.

    Raises:
        PatchApplyError: If the patch names no files
    """
    files: List[FilePatch] = []
    current: Optional[FilePatch] = None
    hunk: Optional[Hunk] = None

    for line in patch.splitlines():
        header = _FILE_HEADER_RE.match(line)
        if header:
            name = re.sub(r"^[ab]/", "", header.group(1))
            # "--- a/x" followed by "+++ b/x" describes one file
            if current is None or current.hunks or line.startswith("---"):
                current = FilePatch(filename=name)
                files.append(current)
            else:
                current.filename = name
            hunk = None
            continue

        match = _HUNK_HEADER_RE.match(line)
        if match:
            if current is None:
                raise PatchApplyError("Hunk before any file header", patch=patch)
            hunk = Hunk(old_start=int(match.group(1)))
            current.hunks.append(hunk)
            continue

        if hunk is None or current is None:
            continue
        if line.startswith("+"):
            hunk.lines.append(("+", line[1:]))
            current.additions += 1
        elif line.startswith("-"):
            hunk.lines.append(("-", line[1:]))
            current.deletions += 1
        elif line.startswith(" ") or line == "":
            hunk.lines.append((" ", line[1:]))

    if not files:
        raise PatchApplyError("Patch does not contain valid file changes", patch=patch)
    return files


def _apply_hunk(lines: List[str], hunk: Hunk, offset: int) -> Tuple[List[str], int]:
    index = max(0, hunk.old_start - 1 + offset)
    result = lines[:index]
    for kind, text in hunk.lines:
        if kind == "+":
            result.append(text)
            continue
        if index >= len(lines) or lines[index] != text:
            label = "Context" if kind == " " else "Deletion"
            raise PatchApplyError(f"{label} mismatch at line {index + 1}")
        if kind == " ":
            result.append(text)
        index += 1
    added = sum(1 for kind, _ in hunk.lines if kind == "+")
    removed = sum(1 for kind, _ in hunk.lines if kind == "-")
    result.extend(lines[index:])
    return result, offset + added - removed


def apply_patch(patch: str, content: str) -> str:
    """Apply every hunk of patch to content.

    Raises:
        PatchApplyError: On a parse error or any context/deletion mismatch
    """
    files = parse_unified_diff(patch)
    lines = content.split("\n")
    offset = 0
    try:
        for file_patch in files:
            for hunk in file_patch.hunks:
                lines, offset = _apply_hunk(lines, hunk, offset)
    except PatchApplyError as e:
        raise PatchApplyError(e.message, patch=patch, file_content=content) from None
    return "\n".join(lines)


def analyze_patch_issues(patch: str) -> List[str]:
    """Common reasons a patch fails, phrased for the correction prompt."""
    issues = []
    if "@@" not in patch and "---" not in patch and "+++" not in patch:
        issues.append("patch may not be in proper unified diff format")

    context_lines = len(re.findall(r"^ ", patch, re.MULTILINE))
    change_lines = len(re.findall(r"^[+-](?![+-]{2} )", patch, re.MULTILINE))
    if change_lines > 0 and context_lines < 3:
        issues.append("insufficient context lines for reliable patch application")

    if "\t" in patch and "    " in patch:
        issues.append("mixed tabs and spaces detected")
    return issues


def _content_preview(content: str, max_lines: int = PREVIEW_MAX_LINES) -> str:
    lines = content.split("\n")
    if len(lines) <= max_lines:
        return content
    half = max_lines // 2
    omitted = len(lines) - max_lines
    return "\n".join(lines[:half] + [f"... [{omitted} lines omitted] ..."] + lines[-half:])


@dataclass
class _PatchAttempt:
    """Progress of one patch healing call, kept outside the timed coroutine."""

    healed_patch: Optional[str] = None
    healed_error: Optional[PatchApplyError] = None
    endpoint_consulted: bool = False


class PatchHealer:
    """Apply a patch, asking the correction endpoint to repair it on failure.

    Healing shares the string healer's concurrency limit and runs under
    the ``patch_healing_timeout`` policy. Up to ``patch_healing_max_attempts``
    corrections are requested, each built from the latest failing patch and
    its error.
    """

    def __init__(
        self,
        endpoint: Optional[CorrectionEndpoint],
        flags: FeatureFlagManager,
        metrics: Optional[HealingMetrics] = None,
        limiter: Optional[ConcurrencyLimiter] = None,
    ):
        self.endpoint = endpoint
        self.flags = flags
        self.metrics = metrics
        self.limiter = limiter or ConcurrencyLimiter(flags)

    def build_commit(self, patch: str, doc_text: str, target: str = "document") -> PatchApplyResult:
        """Apply patch to doc_text and describe the change."""
        files = parse_unified_diff(patch)
        content = apply_patch(patch, doc_text)
        commit = {
            "patch": patch,
            "message": f"Apply patch to {target}",
            "files": [f.filename for f in files],
            "additions": sum(f.additions for f in files),
            "deletions": sum(f.deletions for f in files),
        }
        return PatchApplyResult(content=content, commit=commit)

    def _healing_context(self, patch: str, doc_text: str, explanation: str) -> str:
        parts = [explanation] if explanation else []
        preview = _content_preview(doc_text)
        if preview:
            parts.append(f"File content preview:\n```\n{preview}\n```")
        issues = analyze_patch_issues(patch)
        if issues:
            parts.append(f"Potential issues: {', '.join(issues)}")
        return "\n\n".join(parts)

    async def heal(
        self,
        patch: str,
        doc_text: str,
        explanation: str,
        error: Exception,
        token: Optional[CancellationToken] = None,
    ) -> Optional[str]:
        """Corrected patch from the endpoint, or None.

        Endpoint exceptions are logged and count as no correction.
        """
        if self.endpoint is None:
            return None
        messages = build_patch_messages(
            patch, self._healing_context(patch, doc_text, explanation), str(error)
        )
        try:
            response = await self.endpoint.make_chat_request(
                "patchHealing", messages, PATCH_HEALING_SCHEMA, token
            )
        except Exception as e:
            logger.warning("Patch healing request failed: %s", e, exc_info=True)
            return None
        if not response.ok:
            logger.info("Patch healing endpoint returned %s", response.status.value)
            return None
        data = parse_json_response(response.content) or {}
        healed = data.get("corrected_patch")
        if not isinstance(healed, str) or not healed.strip() or healed == patch:
            return None
        return healed

    async def _heal_and_apply(
        self,
        patch: str,
        doc_text: str,
        explanation: str,
        original: PatchApplyError,
        token: Optional[CancellationToken],
        target: str,
        state: _PatchAttempt,
    ) -> Optional[PatchApplyResult]:
        max_attempts = max(1, int(self.flags.get_policy("patch_healing_max_attempts")))
        current: str = patch
        error: PatchApplyError = original
        for attempt in range(1, max_attempts + 1):
            if token is not None and token.is_cancellation_requested:
                logger.info("Patch healing cancelled: %s", token.reason)
                break
            state.endpoint_consulted = state.endpoint_consulted or self.endpoint is not None
            healed = await self.heal(current, doc_text, explanation, error, token)
            if healed is None:
                break
            state.healed_patch = healed
            try:
                result = self.build_commit(healed, doc_text, target)
            except PatchApplyError as e:
                logger.debug(
                    "Healed patch for %s failed (attempt %d/%d): %s",
                    target,
                    attempt,
                    max_attempts,
                    e,
                )
                state.healed_error = e
                current, error = healed, e
                continue
            result.was_healed = True
            result.healed_patch = healed
            return result
        return None

    def _record(
        self,
        model: Optional[ModelIdentity],
        success: bool,
        elapsed: float,
        state: _PatchAttempt,
        error: Exception,
    ) -> None:
        if self.metrics is None:
            return
        result = HealingResult(
            success=success,
            strategy=HealingStrategy.LLM_CORRECTION if success else HealingStrategy.NONE,
            elapsed=elapsed,
            healing_applied=success,
            metacognition_used=state.endpoint_consulted,
            error=None if success else str(error),
            attempted_strategies=(
                (HealingStrategy.LLM_CORRECTION.value,) if state.endpoint_consulted else ()
            ),
        )
        self.metrics.record(
            model.family.lower() if model else "unknown",
            result,
            record_time=self.flags.is_enabled("healing_performance_metrics"),
        )

    async def apply_with_healing(
        self,
        patch: str,
        doc_text: str,
        explanation: str = "",
        token: Optional[CancellationToken] = None,
        target: str = "document",
        model: Optional[ModelIdentity] = None,
    ) -> PatchApplyResult:
        """Apply patch, healing it on failure.

        Raises:
            PatchApplyError: The original error when no correction applied,
                including after a timeout
            HealedError: When every healed patch failed to apply as well
        """
        try:
            return self.build_commit(patch, doc_text, target)
        except PatchApplyError as e:
            if not self.flags.is_enabled("patch_healing_enabled"):
                raise
            original = e

        start = time.monotonic()
        state = _PatchAttempt()
        result: Optional[PatchApplyResult] = None
        timed_out = False
        timeout = float(self.flags.get_policy("patch_healing_timeout"))
        async with self.limiter.get():
            try:
                result = await asyncio.wait_for(
                    self._heal_and_apply(
                        patch, doc_text, explanation, original, token, target, state
                    ),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning("Patch healing for %s timed out after %.1fs", target, timeout)

        elapsed = time.monotonic() - start
        self._record(model, result is not None, elapsed, state, original)
        if result is not None:
            logger.info("Healed patch for %s in %.2fs", target, elapsed)
            return result
        if state.healed_error is not None and not timed_out:
            raise HealedError(
                original, state.healed_error, state.healed_patch or ""
            ) from state.healed_error
        logger.info("Patch healing produced no correction for %s", target)
        raise original

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

"""Correction endpoint used by LLM-assisted healing.

The healing engine only needs one capability from a model: answer a
chat-style request, optionally constrained to a JSON schema. Anything that
is not a successful answer (network error, rate limit, cancellation) comes
back as a status, never as an exception.

Example:
    endpoint = OpenAICompatibleEndpoint.from_settings(settings)
    response = await endpoint.make_chat_request(
        "toolHealing", build_old_string_messages(content, snippet), OLD_STRING_CORRECTION_SCHEMA
    )
    if response.status is ChatResponseStatus.SUCCESS:
        data = parse_json_response(response.content)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from toolheal.config.settings import Settings
from toolheal.config.timeouts import Timeouts
from toolheal.core.cancellation import CancellationToken

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, Any]

_JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


# =============================================================================
# Structured-output schemas
# =============================================================================

OLD_STRING_CORRECTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "corrected_target_snippet": {
            "type": "string",
            "description": (
                "The corrected version of the target snippet that exactly and uniquely "
                "matches a segment within the provided file content."
            ),
        },
        "corrected_new_string": {
            "type": "string",
            "description": "The replacement text adjusted to the corrected snippet's formatting.",
        },
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
    "required": ["corrected_target_snippet"],
}

NEW_STRING_CORRECTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "corrected_new_string": {
            "type": "string",
            "description": "The corrected version of the new string with proper escaping/formatting.",
        },
    },
    "required": ["corrected_new_string"],
}

PATCH_HEALING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "corrected_patch": {
            "type": "string",
            "description": "The corrected patch that will apply cleanly to the file.",
        },
        "explanation": {
            "type": "string",
            "description": "Brief explanation of what was corrected in the patch.",
        },
    },
    "required": ["corrected_patch"],
}


# =============================================================================
# Endpoint contract
# =============================================================================


class ChatResponseStatus(str, Enum):
    """Outcome of a correction request."""

    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"
    RATE_LIMIT = "rate_limit"


@dataclass(frozen=True)
class ChatResponse:
    status: ChatResponseStatus
    content: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ChatResponseStatus.SUCCESS and bool(self.content)


@runtime_checkable
class CorrectionEndpoint(Protocol):
    """Chat-style model endpoint consulted when heuristics fail."""

    async def make_chat_request(
        self,
        request_name: str,
        messages: List[ChatMessage],
        schema: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ) -> ChatResponse: ...


class OpenAICompatibleEndpoint:
    """CorrectionEndpoint backed by an OpenAI-compatible ``/chat/completions`` API.

    Works with OpenAI, OpenRouter, vLLM, LMStudio and any server speaking
    the same wire format. A client can be injected for testing.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout if timeout is not None else Timeouts.HTTP_CORRECTION

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(self.timeout),
        )
        if client is not None and api_key:
            self.client.headers.update(headers)

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["OpenAICompatibleEndpoint"]:
        """Endpoint configured by settings, or None when no base URL is set."""
        if not settings.correction_base_url:
            return None
        return cls(
            base_url=settings.correction_base_url,
            api_key=settings.correction_api_key,
            model=settings.correction_model,
            temperature=settings.correction_temperature,
            max_tokens=settings.correction_max_tokens,
        )

    def _build_payload(
        self, messages: List[ChatMessage], schema: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "correction", "schema": schema},
            }
        return payload

    async def make_chat_request(
        self,
        request_name: str,
        messages: List[ChatMessage],
        schema: Optional[Dict[str, Any]] = None,
        token: Optional[CancellationToken] = None,
    ) -> ChatResponse:
        if token is not None and token.is_cancellation_requested:
            return ChatResponse(ChatResponseStatus.CANCELLED, error="Cancelled before request")

        request = asyncio.ensure_future(
            self.client.post(
                f"{self.base_url}/chat/completions", json=self._build_payload(messages, schema)
            )
        )
        remove = None
        if token is not None:
            loop = asyncio.get_running_loop()
            remove = token.on_cancelled(lambda _reason: loop.call_soon_threadsafe(request.cancel))

        try:
            response = await request
        except asyncio.CancelledError:
            if token is not None and token.is_cancellation_requested:
                logger.debug("Correction request '%s' cancelled", request_name)
                return ChatResponse(ChatResponseStatus.CANCELLED, error=token.reason)
            raise
        except httpx.HTTPError as e:
            logger.warning("Correction request '%s' failed: %s", request_name, e)
            return ChatResponse(ChatResponseStatus.ERROR, error=str(e))
        finally:
            if remove is not None:
                remove()

        if response.status_code == 429:
            logger.warning("Correction request '%s' rate limited", request_name)
            return ChatResponse(ChatResponseStatus.RATE_LIMIT, error="Rate limit exceeded")
        if response.status_code >= 400:
            logger.warning(
                "Correction request '%s' returned HTTP %d", request_name, response.status_code
            )
            return ChatResponse(
                ChatResponseStatus.ERROR,
                error=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("Malformed correction response for '%s': %s", request_name, e)
            return ChatResponse(ChatResponseStatus.ERROR, error=f"Malformed response: {e}")

        return ChatResponse(ChatResponseStatus.SUCCESS, content=content)

    async def test_connection(self) -> Dict[str, Any]:
        """Send a trivial request and report success and latency."""
        start = time.monotonic()
        response = await self.make_chat_request(
            "connectionTest", [{"role": "user", "content": "Reply with OK."}]
        )
        latency = time.monotonic() - start
        return {
            "success": response.status is ChatResponseStatus.SUCCESS,
            "status": response.status.value,
            "latency": latency,
            "error": response.error,
        }

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


# =============================================================================
# Prompts and parsing
# =============================================================================


def _user_message(prompt: str) -> List[ChatMessage]:
    return [{"role": "user", "content": prompt}]


def build_old_string_messages(
    file_content: str, snippet: str, new_string: Optional[str] = None, error: str = ""
) -> List[ChatMessage]:
    """Ask for the file segment a failed snippet was meant to match."""
    parts = [
        "Context: A process needs to find an exact literal, unique match for a specific "
        "text snippet within a file's content. The provided snippet failed to match exactly.",
    ]
    if error:
        parts.append(f"Error: {error}")
    parts.append(
        "Task: Analyze the provided file content and the problematic target snippet. "
        "Identify the segment in the file content that the snippet was *most likely* "
        "intended to match."
    )
    parts.append(f"Problematic target snippet:\n```\n{snippet}\n```")
    if new_string is not None:
        parts.append(f"Intended replacement:\n```\n{new_string}\n```")
    parts.append(f"File Content:\n```\n{file_content}\n```")
    parts.append(
        "Return ONLY JSON with key 'corrected_target_snippet', optionally "
        "'corrected_new_string' when the replacement needs the same correction, and "
        "'confidence' between 0 and 1."
    )
    return _user_message("\n\n".join(parts))


def build_new_string_messages(
    original_old: str, corrected_old: str, original_new: str
) -> List[ChatMessage]:
    """Ask for a replacement string in the corrected snippet's style."""
    prompt = (
        "Context: A string replacement operation needs to correct the new string to match "
        "the corrected old string format.\n\n"
        f"Original old string:\n```\n{original_old}\n```\n\n"
        f"Corrected old string:\n```\n{corrected_old}\n```\n\n"
        f"Original new string (potentially with escaping issues):\n```\n{original_new}\n```\n\n"
        "Task: Provide a corrected new string that maintains the same escaping/formatting "
        "style as the corrected old string.\n\n"
        "Return ONLY the corrected new string in JSON format with key 'corrected_new_string'."
    )
    return _user_message(prompt)


def build_patch_messages(patch: str, explanation: str = "", error: str = "") -> List[ChatMessage]:
    """Ask for a version of a failed patch that applies cleanly."""
    prompt = f"The following patch failed to apply cleanly. Please fix it:\n\nOriginal patch:\n```\n{patch}\n```\n\n"
    if error:
        prompt += f"Error: {error}\n\n"
    if explanation:
        prompt += f"Context: {explanation}\n\n"
    prompt += (
        "Please provide a corrected patch that will apply cleanly. "
        "Return the result in JSON format with key 'corrected_patch'."
    )
    return _user_message(prompt)


def parse_json_response(text: str) -> Optional[Dict[str, Any]]:
    """Extract the JSON object from a model reply.

    The first ``{`` to the last ``}`` is tried first, then the whole text.
    Returns None when nothing parses to an object.
    """
    if not text:
        return None
    candidates = []
    match = _JSON_BLOCK_RE.search(text)
    if match:
        candidates.append(match.group(0))
    candidates.append(text)
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None

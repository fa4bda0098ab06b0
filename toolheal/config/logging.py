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

"""Logging setup for applications embedding toolheal.

Logging Levels (toolheal convention):
- DEBUG: Per-strategy healing telemetry, flag resolution
- INFO: Registration, healing successes, configuration changes
- WARNING: Duplicate registration, strategy failures, timeouts
- ERROR: Unexpected tool failures
"""

import logging
from typing import Any, Dict, Optional

# Third-party loggers to silence (they generate too much noise)
NOISY_LOGGERS = [
    "httpcore",
    "httpx",
    "asyncio",
]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

SENSITIVE_KEYS = ("password", "token", "key", "secret", "credential")

_HANDLER_MARKER = "_toolheal_handler"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the ``toolheal`` logger, silencing noisy third-party loggers.

    Safe to call more than once; handlers are attached only the first time.

    Args:
        level: Level name for toolheal loggers
        log_file: Optional path for an additional file handler
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger("toolheal")
    root.setLevel(numeric_level)

    if not any(getattr(h, _HANDLER_MARKER, False) for h in root.handlers):
        formatter = logging.Formatter(LOG_FORMAT)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        setattr(stream_handler, _HANDLER_MARKER, True)
        root.addHandler(stream_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            setattr(file_handler, _HANDLER_MARKER, True)
            root.addHandler(file_handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def sanitize_parameters(params: Dict[str, Any], max_length: int = 200) -> Dict[str, Any]:
    """Copy of ``params`` that is safe to log.

    Values under sensitive-looking keys become ``[REDACTED]``; long strings
    are truncated.
    """
    sanitized: Dict[str, Any] = {}
    for key, value in params.items():
        if any(marker in key.lower() for marker in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, str) and len(value) > max_length:
            sanitized[key] = f"{value[:max_length]}... ({len(value)} chars)"
        else:
            sanitized[key] = value
    return sanitized

# SPDX-FileCopyrightText: 2025 Theori Inc.
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Configuration helpers for requestflow."""

import os
from dataclasses import dataclass

from .version import __version__

DEFAULT_USER_AGENT = f"requestflow/{__version__}"


def _float_env(name: str, default: float) -> float:
    try:
        value = os.getenv(name)
        return float(value) if value is not None else default
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        value = os.getenv(name)
        return int(value) if value is not None else default
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class RequestSettings:
    """Pipeline and transport defaults. Durations are milliseconds."""

    timeout: float = 5000
    retries: int = 0
    retry_delay: float = 2000
    user_agent: str = DEFAULT_USER_AGENT
    follow_redirects: bool = True
    verify_ssl: bool = True
    upload_chunk_bytes: int = 64 * 1024

    @classmethod
    def from_env(cls) -> "RequestSettings":
        """Create settings from environment variables (evaluated at call time)."""
        retries = _int_env("REQUESTFLOW_RETRIES", cls.retries)
        if retries < 0:
            retries = cls.retries
        chunk = _int_env("REQUESTFLOW_UPLOAD_CHUNK_BYTES", cls.upload_chunk_bytes)
        if chunk <= 0:
            chunk = cls.upload_chunk_bytes
        return cls(
            timeout=_float_env("REQUESTFLOW_TIMEOUT_MS", cls.timeout),
            retries=retries,
            retry_delay=_float_env("REQUESTFLOW_RETRY_DELAY_MS", cls.retry_delay),
            user_agent=os.getenv("REQUESTFLOW_USER_AGENT", cls.user_agent),
            follow_redirects=_bool_env("REQUESTFLOW_FOLLOW_REDIRECTS", cls.follow_redirects),
            verify_ssl=_bool_env("REQUESTFLOW_VERIFY_SSL", cls.verify_ssl),
            upload_chunk_bytes=chunk,
        )


def load_request_settings() -> RequestSettings:
    """Load request settings from environment with sensible defaults."""
    return RequestSettings.from_env()

"""
Configuration for the notification pipeline.

Defaults match the ordering backend's development setup. Every value can be
overridden from the environment through `load_settings()`:

    NOTIFY_BASE_URL         http://localhost:5454
    NOTIFY_STREAM_PATH      /api/notifications/stream
    NOTIFY_MAX_RETRIES      5
    NOTIFY_BASE_DELAY_MS    1000
    NOTIFY_MAX_DELAY_MS     30000
    NOTIFY_IDLE_TIMEOUT_S   75   ("0" or "off" disables the watchdog)
    NOTIFY_TOKEN            bearer token for the CLI
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

logger = logging.getLogger("config")

_FALSY = {"0", "off", "false", "no", "none", ""}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for reconnecting the stream."""

    max_retries: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000

    def delay_ms(self, attempt: int) -> int:
        """
        Delay before retry number `attempt` (1-based).

        attempt=1 -> 1000ms, 2 -> 2000ms, ... capped at max_delay_ms.
        """
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)


@dataclass(frozen=True)
class StreamSettings:
    """Where and how to connect."""

    base_url: str = "http://localhost:5454"
    stream_path: str = "/api/notifications/stream"
    api_prefix: str = "/api/notifications"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    # Server heartbeats every 30s; silence for this long means a dead stream
    idle_timeout_s: Optional[float] = 75.0
    request_timeout_s: float = 60.0
    token: Optional[str] = None

    @property
    def stream_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.stream_path}"


def _coerce_int(raw: Optional[str], default: int, name: str) -> int:
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def _coerce_timeout(raw: Optional[str], default: Optional[float]) -> Optional[float]:
    if raw is None:
        return default
    if raw.strip().lower() in _FALSY:
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid NOTIFY_IDLE_TIMEOUT_S={raw!r}, using {default}")
        return default
    return value if value > 0 else None


def load_settings(env: Optional[Mapping[str, str]] = None) -> StreamSettings:
    """Build settings from environment variables, falling back to defaults."""
    env = os.environ if env is None else env
    defaults = StreamSettings()

    retry = RetryPolicy(
        max_retries=_coerce_int(env.get("NOTIFY_MAX_RETRIES"), defaults.retry.max_retries, "NOTIFY_MAX_RETRIES"),
        base_delay_ms=_coerce_int(env.get("NOTIFY_BASE_DELAY_MS"), defaults.retry.base_delay_ms, "NOTIFY_BASE_DELAY_MS"),
        max_delay_ms=_coerce_int(env.get("NOTIFY_MAX_DELAY_MS"), defaults.retry.max_delay_ms, "NOTIFY_MAX_DELAY_MS"),
    )
    return StreamSettings(
        base_url=env.get("NOTIFY_BASE_URL") or defaults.base_url,
        stream_path=env.get("NOTIFY_STREAM_PATH") or defaults.stream_path,
        retry=retry,
        idle_timeout_s=_coerce_timeout(env.get("NOTIFY_IDLE_TIMEOUT_S"), defaults.idle_timeout_s),
        token=env.get("NOTIFY_TOKEN") or None,
    )

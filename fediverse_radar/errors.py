"""Exception types shared across the radar engine."""
from __future__ import annotations

from typing import Optional


class RadarError(Exception):
    """Base class for fediverse-radar failures."""


class ConfigurationError(RadarError, RuntimeError):
    """Required configuration is missing or invalid; raised before any network call."""


class InputError(RadarError):
    """An input export or handle list cannot be read at all."""


class MalformedIdentifierError(RadarError, ValueError):
    """An account identifier does not have the shape its namespace requires."""

    def __init__(self, raw: str, reason: str) -> None:
        super().__init__(f"malformed identifier {raw!r}: {reason}")
        self.raw = raw
        self.reason = reason


class RateLimitedError(RadarError):
    """The upstream instance answered 429 for an existence probe."""

    def __init__(self, instance: str, retry_after: Optional[float] = None) -> None:
        detail = f"rate limited by {instance}"
        if retry_after is not None:
            detail += f" (retry after {retry_after:g}s)"
        super().__init__(detail)
        self.instance = instance
        self.retry_after = retry_after

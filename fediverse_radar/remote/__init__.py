"""Network-facing lookups: existence probes and follow-list crawls."""

from __future__ import annotations

from .follows import BlueskyFollowResolver, MastodonFollowResolver, build_session
from .prober import BlueskyProfileProber, MastodonSearchProber, build_async_client

__all__ = [
    "BlueskyFollowResolver",
    "BlueskyProfileProber",
    "MastodonFollowResolver",
    "MastodonSearchProber",
    "build_async_client",
    "build_session",
]

"""Bridgy Fed address mapping and exclusion rules."""

from __future__ import annotations

from .codec import (
    BRIDGE_REQUEST_ADDRESS,
    bluesky_to_bridge,
    bridge_request_message,
    canonical_key,
    convert,
    mastodon_to_bridge,
    to_bridged,
)
from .exclusion import EXCLUDED_SUFFIXES, is_excluded

__all__ = [
    "BRIDGE_REQUEST_ADDRESS",
    "EXCLUDED_SUFFIXES",
    "bluesky_to_bridge",
    "bridge_request_message",
    "canonical_key",
    "convert",
    "is_excluded",
    "mastodon_to_bridge",
    "to_bridged",
]

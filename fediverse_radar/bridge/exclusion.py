"""Identifiers that must never be converted into bridge addresses."""
from __future__ import annotations

# Bridge output on the fediverse side, Threads, bird.makeup, and Bluesky
# handles that are themselves mirrored fediverse accounts.
EXCLUDED_SUFFIXES = (
    "@bsky.brid.gy",
    "@threads.net",
    "@bird.makeup",
    ".ap.brid.gy",
)


def is_excluded(raw_identifier: str) -> bool:
    return raw_identifier.strip().lower().endswith(EXCLUDED_SUFFIXES)

"""Data models for the bridge cross-reference engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class Namespace(str, Enum):
    MASTODON = "network-A"
    BLUESKY = "network-B"
    BRIDGE = "bridge"


class Direction(str, Enum):
    """Which way a run crosses the bridge."""

    TO_BLUESKY = "masto-to-bsky"
    TO_MASTODON = "bsky-to-masto"

    @property
    def source_namespace(self) -> Namespace:
        return Namespace.MASTODON if self is Direction.TO_BLUESKY else Namespace.BLUESKY


class ProbeState(str, Enum):
    EXISTS = "exists"
    ABSENT = "absent"
    ERROR = "error"


class RowStatus(str, Enum):
    BRIDGED_NEW = "BridgedNew"
    BRIDGED_ALREADY_FOLLOWED = "BridgedAlreadyFollowed"
    NOT_BRIDGED = "NotBridged"
    UNKNOWN = "Unknown"

    @property
    def is_bridged(self) -> bool:
        return self in (RowStatus.BRIDGED_NEW, RowStatus.BRIDGED_ALREADY_FOLLOWED)


def normalize_handle(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value.strip().lstrip("@").lower()
    return cleaned or None


@dataclass(frozen=True)
class AccountIdentifier:
    raw: str
    namespace: Namespace

    @property
    def key(self) -> str:
        """Lowercase form used for every comparison in the engine."""
        return normalize_handle(self.raw) or ""

    def __str__(self) -> str:
        return self.raw


@dataclass(frozen=True)
class ConversionRecord:
    source: AccountIdentifier
    derived: AccountIdentifier
    profile_url: str


@dataclass(frozen=True)
class ExistenceResult:
    identifier: AccountIdentifier
    state: ProbeState
    detail: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.state is ProbeState.EXISTS


@dataclass(frozen=True)
class FollowSet:
    """Lowercase handles followed by ``owner``; ``complete`` is False after an aborted crawl."""

    owner: AccountIdentifier
    members: FrozenSet[str]
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    complete: bool = True

    @classmethod
    def build(
        cls,
        owner: AccountIdentifier,
        handles: Iterable[Optional[str]],
        *,
        complete: bool = True,
    ) -> "FollowSet":
        members = frozenset(h for h in (normalize_handle(raw) for raw in handles) if h)
        return cls(owner=owner, members=members, complete=complete)

    @classmethod
    def empty(cls, owner: AccountIdentifier) -> "FollowSet":
        return cls(owner=owner, members=frozenset())

    def __contains__(self, handle: object) -> bool:
        if not isinstance(handle, str):
            return False
        return normalize_handle(handle) in self.members

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class ResultRow:
    handle: str
    link: str
    status: RowStatus
    search_link: Optional[str] = None
    source: Optional[str] = None
    detail: Optional[str] = None

    @property
    def key(self) -> str:
        return normalize_handle(self.handle) or ""

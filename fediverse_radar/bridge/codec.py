"""Pure address mapping between Mastodon, Bluesky and the Bridgy Fed namespace."""
from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import quote

from ..config import BLUESKY_WEB
from ..errors import MalformedIdentifierError
from ..models import AccountIdentifier, ConversionRecord, Direction, Namespace

AP_BRIDGE_SUFFIX = "ap.brid.gy"
BSKY_BRIDGE_DOMAIN = "bsky.brid.gy"

# Where a user asks the bridge to start mirroring an account.
BRIDGE_REQUEST_ADDRESS = {
    Direction.TO_BLUESKY: "@ap.brid.gy",
    Direction.TO_MASTODON: "@bsky.brid.gy@bsky.brid.gy",
}

_SUBSTITUTED_CHARS = str.maketrans({"_": "-", "~": "-"})


def _strip(raw: str) -> str:
    return raw.strip().lstrip("@")


def split_mastodon_address(address: str) -> Tuple[str, str]:
    """Return ``(user, instance)`` for ``user@instance`` or raise MalformedIdentifierError."""

    cleaned = _strip(address)
    if not cleaned:
        raise MalformedIdentifierError(address, "empty address")
    if any(ch.isspace() for ch in cleaned):
        raise MalformedIdentifierError(address, "whitespace inside address")
    parts = cleaned.split("@")
    if len(parts) != 2:
        raise MalformedIdentifierError(address, "expected exactly one '@'")
    user, instance = parts
    if not user or not instance:
        raise MalformedIdentifierError(address, "empty user or instance segment")
    return user, instance


def validate_bluesky_handle(handle: str) -> str:
    cleaned = _strip(handle)
    if not cleaned:
        raise MalformedIdentifierError(handle, "empty handle")
    if "@" in cleaned or any(ch.isspace() for ch in cleaned):
        raise MalformedIdentifierError(handle, "not a dotted handle")
    if "." not in cleaned or any(not label for label in cleaned.split(".")):
        raise MalformedIdentifierError(handle, "handle needs non-empty dotted labels")
    return cleaned


def mastodon_to_bridge(address: str) -> AccountIdentifier:
    """``jo_hn@mastodon.social`` -> ``jo-hn.mastodon.social.ap.brid.gy``."""

    user, instance = split_mastodon_address(address.translate(_SUBSTITUTED_CHARS))
    return AccountIdentifier(f"{user}.{instance}.{AP_BRIDGE_SUFFIX}", Namespace.BRIDGE)


def bluesky_to_bridge(handle: str) -> AccountIdentifier:
    """``alice.bsky.social`` -> ``alice.bsky.social@bsky.brid.gy``."""

    cleaned = validate_bluesky_handle(handle)
    return AccountIdentifier(f"{cleaned}@{BSKY_BRIDGE_DOMAIN}", Namespace.BRIDGE)


def to_bridged(identifier: AccountIdentifier) -> AccountIdentifier:
    if identifier.namespace is Namespace.MASTODON:
        return mastodon_to_bridge(identifier.raw)
    if identifier.namespace is Namespace.BLUESKY:
        return bluesky_to_bridge(identifier.raw)
    raise MalformedIdentifierError(identifier.raw, "already a bridge identifier")


def canonical_key(identifier: AccountIdentifier) -> str:
    """Lowercase full bridge identifier, the one matching key for both directions."""

    bridged = identifier if identifier.namespace is Namespace.BRIDGE else to_bridged(identifier)
    return bridged.key


def bridged_display(derived: AccountIdentifier) -> str:
    """Handle as users type it: Bluesky handles bare, fediverse addresses with a leading '@'."""

    if derived.raw.endswith(f"@{BSKY_BRIDGE_DOMAIN}"):
        return f"@{derived.raw}"
    return derived.raw


def profile_url(derived: AccountIdentifier, link_instance: Optional[str] = None) -> str:
    if derived.raw.endswith(f"@{BSKY_BRIDGE_DOMAIN}"):
        if not link_instance:
            raise ValueError("a Mastodon instance is required to link bridged Bluesky accounts")
        return f"https://{link_instance}/@{derived.raw}"
    return f"{BLUESKY_WEB}/profile/{derived.raw}"


def search_url(derived: AccountIdentifier, link_instance: Optional[str] = None) -> str:
    if derived.raw.endswith(f"@{BSKY_BRIDGE_DOMAIN}"):
        if not link_instance:
            raise ValueError("a Mastodon instance is required to search for bridged Bluesky accounts")
        return f"https://{link_instance}/search?q={quote('@' + derived.raw, safe='')}"
    return f"{BLUESKY_WEB}/search?q={quote(derived.raw, safe='')}"


def source_profile_url(source: AccountIdentifier) -> str:
    if source.namespace is Namespace.MASTODON:
        user, instance = split_mastodon_address(source.raw)
        return f"https://{instance}/@{user}"
    return f"{BLUESKY_WEB}/profile/{_strip(source.raw)}"


def convert(identifier: AccountIdentifier, link_instance: Optional[str] = None) -> ConversionRecord:
    derived = to_bridged(identifier)
    return ConversionRecord(
        source=identifier,
        derived=derived,
        profile_url=profile_url(derived, link_instance),
    )


def bridge_request_message(direction: Direction, source_handle: str) -> str:
    return f"{BRIDGE_REQUEST_ADDRESS[direction]} {source_handle}"

"""Readers for follow exports and the cached handle list."""
from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import InputError
from .models import AccountIdentifier, FollowSet, Namespace, normalize_handle

LOGGER = logging.getLogger(__name__)

MASTODON_ADDRESS_COLUMN = "Account address"
DEFAULT_HANDLE_CACHE = Path("BlueSkyHandles.txt")


def read_mastodon_export(path: Path) -> List[AccountIdentifier]:
    """Return followed addresses from a Mastodon ``following_accounts.csv`` export.

    Rows without an address are skipped. A missing file or a file without the
    ``Account address`` column is an InputError.
    """

    try:
        handle = path.open(newline="", encoding="utf-8-sig")
    except OSError as exc:
        raise InputError(f"Cannot read Mastodon export {path}: {exc}") from exc

    identifiers: List[AccountIdentifier] = []
    skipped = 0
    with handle:
        reader = csv.DictReader(handle)
        fieldnames = [name.strip() for name in reader.fieldnames or []]
        if MASTODON_ADDRESS_COLUMN not in fieldnames:
            raise InputError(
                f"{path} has no '{MASTODON_ADDRESS_COLUMN}' column (found: {', '.join(fieldnames) or 'none'})"
            )
        reader.fieldnames = fieldnames
        try:
            for row in reader:
                address = (row.get(MASTODON_ADDRESS_COLUMN) or "").strip()
                if not address:
                    skipped += 1
                    continue
                identifiers.append(AccountIdentifier(address.lstrip("@"), Namespace.MASTODON))
        except csv.Error as exc:
            LOGGER.warning("Stopped reading %s at line %d: %s", path, reader.line_num, exc)

    if skipped:
        LOGGER.warning("Skipped %d rows without an account address in %s", skipped, path)
    LOGGER.info("Read %d followed accounts from %s", len(identifiers), path)
    return identifiers


def follow_set_from_export(path: Path, owner: Optional[AccountIdentifier] = None) -> FollowSet:
    """FollowSet of every address in a Mastodon export (lowercase full addresses)."""

    owner = owner or AccountIdentifier(path.stem, Namespace.MASTODON)
    return FollowSet.build(owner, (identifier.raw for identifier in read_mastodon_export(path)))


def read_follow_record_subjects(directory: Path, limit: Optional[int] = None) -> List[str]:
    """Return the ``subject`` DIDs of an atproto export's ``app.bsky.graph.follow`` records.

    Files are read in name order; unreadable or subject-less records are
    skipped. ``limit`` caps the number of files examined.
    """

    if not directory.is_dir():
        raise InputError(f"Follow record directory not found: {directory}")

    files = sorted(p for p in directory.iterdir() if p.is_file())
    if limit is not None:
        files = files[: max(limit, 0)]

    subjects: List[str] = []
    skipped = 0
    for path in files:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Skipping unreadable follow record %s: %s", path.name, exc)
            skipped += 1
            continue
        subject = payload.get("subject") if isinstance(payload, dict) else None
        # listRecords-style dumps nest the record under "value".
        if not subject and isinstance(payload, dict) and isinstance(payload.get("value"), dict):
            subject = payload["value"].get("subject")
        if not isinstance(subject, str) or not subject.strip():
            skipped += 1
            continue
        subjects.append(subject.strip())

    if skipped:
        LOGGER.warning("Skipped %d follow records without a usable subject", skipped)
    return subjects


def find_follow_record_dir(export_root: Path) -> Path:
    """Locate ``did-*/app.bsky.graph.follow`` under an export root (or accept it directly)."""

    if export_root.name == "app.bsky.graph.follow" and export_root.is_dir():
        return export_root
    direct = export_root / "app.bsky.graph.follow"
    if direct.is_dir():
        return direct
    if export_root.is_dir():
        for child in sorted(export_root.iterdir()):
            candidate = child / "app.bsky.graph.follow"
            if child.is_dir() and child.name.startswith("did") and candidate.is_dir():
                return candidate
    raise InputError(f"Could not find an app.bsky.graph.follow directory under {export_root}")


def write_handle_cache(handles: Sequence[str], path: Path = DEFAULT_HANDLE_CACHE) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(handles) + ("\n" if handles else ""), encoding="utf-8")
    LOGGER.info("Wrote %d handles to %s", len(handles), path)
    return path


def read_handle_cache(path: Path = DEFAULT_HANDLE_CACHE) -> List[str]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InputError(f"Cannot read handle list {path}: {exc}") from exc
    handles = [line.strip() for line in content.splitlines()]
    return [handle for handle in handles if handle and not handle.startswith("#")]


def dedupe_handles(handles: Sequence[str]) -> List[str]:
    """Drop repeats case-insensitively, keeping first spelling and order."""

    seen = set()
    unique: List[str] = []
    for handle in handles:
        key = normalize_handle(handle)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(handle.strip().lstrip("@"))
    return unique

"""Append-only checkpoint of finished rows, and resume from it."""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, TextIO

from ..models import ResultRow, RowStatus, normalize_handle

LOGGER = logging.getLogger(__name__)

CHECKPOINT_COLUMNS = ("Handle", "Link", "Status", "Search Link", "Source", "Detail")


class CheckpointWriter:
    """Single writer that flushes one CSV line per finished row.

    The file is truncated on open unless ``append`` is set (resumed runs).
    """

    def __init__(self, path: Path, *, append: bool = False) -> None:
        self.path = path
        self._append = append
        self._handle: Optional[TextIO] = None
        self._writer = None
        self.rows_written = 0

    def open(self) -> "CheckpointWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not (self._append and self.path.exists() and self.path.stat().st_size > 0)
        self._handle = self.path.open("a" if self._append else "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._handle)
        if write_header:
            self._writer.writerow(CHECKPOINT_COLUMNS)
            self._handle.flush()
        return self

    def append(self, row: ResultRow) -> None:
        if self._writer is None or self._handle is None:
            raise RuntimeError("checkpoint writer is not open")
        self._writer.writerow(
            (row.handle, row.link, row.status.value, row.search_link or "", row.source or "", row.detail or "")
        )
        self._handle.flush()
        self.rows_written += 1

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._writer = None

    def __enter__(self) -> "CheckpointWriter":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class ResumeState:
    rows: Dict[str, ResultRow] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)


def load_resume_state(path: Path, *, retry_unknown: bool = True) -> ResumeState:
    """Read rows from a previous checkpoint, keyed by lowercase handle.

    Later lines win over earlier ones for the same handle. ``Unknown`` rows are
    dropped when ``retry_unknown`` is set so they get probed again.
    """

    state = ResumeState()
    if not path.exists():
        state.notes.append(f"resume: checkpoint not found ({path}), starting fresh")
        return state

    invalid = 0
    dropped_unknown = 0
    try:
        with path.open(newline="", encoding="utf-8") as handle:
            for record in csv.DictReader(handle):
                key = normalize_handle(record.get("Handle"))
                try:
                    status = RowStatus(record.get("Status") or "")
                except ValueError:
                    status = None
                if not key or status is None or not record.get("Link"):
                    invalid += 1
                    continue
                if status is RowStatus.UNKNOWN and retry_unknown:
                    dropped_unknown += 1
                    state.rows.pop(key, None)
                    continue
                state.rows[key] = ResultRow(
                    handle=record["Handle"],
                    link=record["Link"],
                    status=status,
                    search_link=record.get("Search Link") or None,
                    source=record.get("Source") or None,
                    detail=record.get("Detail") or None,
                )
    except (OSError, csv.Error) as exc:
        state.notes.append(f"resume: failed to parse checkpoint ({exc}), starting fresh")
        state.rows.clear()
        return state

    if invalid:
        state.notes.append(f"resume: ignored {invalid} invalid checkpoint rows")
    if dropped_unknown:
        state.notes.append(f"resume: will re-check {dropped_unknown} rows that ended Unknown")
    state.notes.append(f"resume: {len(state.rows)} rows reusable from {path}")
    return state

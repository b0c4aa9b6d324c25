"""Tests for the checkpoint writer and resume loading."""
from __future__ import annotations

import pytest

from fediverse_radar.batch.checkpoint import CHECKPOINT_COLUMNS, CheckpointWriter, load_resume_state
from fediverse_radar.models import ResultRow, RowStatus


def _row(handle, status, **kwargs):
    return ResultRow(handle=handle, link=f"https://bsky.app/profile/{handle}", status=status, **kwargs)


@pytest.mark.integration
class TestCheckpointWriter:
    def test_header_and_rows_are_flushed_immediately(self, tmp_path):
        path = tmp_path / "run.checkpoint.csv"
        with CheckpointWriter(path) as writer:
            writer.append(_row("a.ap.brid.gy", RowStatus.BRIDGED_NEW, source="a@x.social"))
            # Visible on disk before the writer closes.
            lines = path.read_text(encoding="utf-8").splitlines()
        assert lines[0] == ",".join(CHECKPOINT_COLUMNS)
        assert lines[1].startswith("a.ap.brid.gy,https://bsky.app/profile/a.ap.brid.gy,BridgedNew")

    def test_append_mode_keeps_existing_rows_and_header(self, tmp_path):
        path = tmp_path / "run.checkpoint.csv"
        with CheckpointWriter(path) as writer:
            writer.append(_row("a.ap.brid.gy", RowStatus.BRIDGED_NEW))
        with CheckpointWriter(path, append=True) as writer:
            writer.append(_row("b.ap.brid.gy", RowStatus.NOT_BRIDGED))
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 3
        assert lines.count(",".join(CHECKPOINT_COLUMNS)) == 1

    def test_append_before_open_is_an_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            CheckpointWriter(tmp_path / "x.csv").append(_row("a.ap.brid.gy", RowStatus.BRIDGED_NEW))


@pytest.mark.integration
class TestLoadResumeState:
    def test_missing_checkpoint_starts_fresh(self, tmp_path):
        state = load_resume_state(tmp_path / "missing.csv")
        assert state.rows == {}
        assert "starting fresh" in state.notes[0]

    def test_rows_keyed_by_lowercase_handle_and_unknown_dropped(self, tmp_path):
        path = tmp_path / "run.checkpoint.csv"
        with CheckpointWriter(path) as writer:
            writer.append(_row("@Alice.bsky.social@bsky.brid.gy", RowStatus.BRIDGED_NEW, source="Alice.bsky.social"))
            writer.append(_row("b.ap.brid.gy", RowStatus.UNKNOWN, detail="HTTP 503"))
            writer.append(_row("c.ap.brid.gy", RowStatus.NOT_BRIDGED))

        state = load_resume_state(path)

        assert set(state.rows) == {"alice.bsky.social@bsky.brid.gy", "c.ap.brid.gy"}
        assert state.rows["alice.bsky.social@bsky.brid.gy"].source == "Alice.bsky.social"
        assert any("re-check 1" in note for note in state.notes)

    def test_unknown_rows_kept_when_not_retrying(self, tmp_path):
        path = tmp_path / "run.checkpoint.csv"
        with CheckpointWriter(path) as writer:
            writer.append(_row("b.ap.brid.gy", RowStatus.UNKNOWN))
        state = load_resume_state(path, retry_unknown=False)
        assert state.rows["b.ap.brid.gy"].status is RowStatus.UNKNOWN

    def test_invalid_rows_are_ignored(self, tmp_path):
        path = tmp_path / "run.checkpoint.csv"
        path.write_text(
            ",".join(CHECKPOINT_COLUMNS) + "\n"
            "a.ap.brid.gy,https://bsky.app/profile/a.ap.brid.gy,Bogus,,,\n"
            ",https://x,BridgedNew,,,\n"
            "c.ap.brid.gy,https://bsky.app/profile/c.ap.brid.gy,NotBridged,,,\n",
            encoding="utf-8",
        )
        state = load_resume_state(path)
        assert list(state.rows) == ["c.ap.brid.gy"]
        assert any("ignored 2" in note for note in state.notes)

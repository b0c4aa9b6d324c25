"""Tests for report artifacts and coverage."""
from __future__ import annotations

import csv
import io

import pytest

from fediverse_radar.models import Direction, ResultRow, RowStatus
from fediverse_radar.reporting import (
    REPORT_COLUMNS,
    ReportMaterializer,
    compute_coverage,
    summarize,
)


def _bsky_row(handle, status, source=None):
    return ResultRow(
        handle=f"@{handle}@bsky.brid.gy",
        link=f"https://mastodon.example/@{handle}@bsky.brid.gy",
        status=status,
        search_link=f"https://mastodon.example/search?q=%40{handle}%40bsky.brid.gy",
        source=source or handle,
    )


ROWS = [
    _bsky_row("zed.dev", RowStatus.BRIDGED_NEW),
    _bsky_row("alice.bsky.social", RowStatus.BRIDGED_ALREADY_FOLLOWED),
    _bsky_row("bob.dev", RowStatus.NOT_BRIDGED),
    _bsky_row("carol.dev", RowStatus.UNKNOWN),
    _bsky_row("Amy.dev", RowStatus.BRIDGED_NEW),
]


# ==============================================================================
# Coverage
# ==============================================================================

@pytest.mark.unit
class TestCoverage:
    def test_three_of_ten_is_thirty_percent(self):
        sources = [f"h{i}.dev" for i in range(1, 11)]
        coverage = compute_coverage(sources, ["h1.dev", "H2.dev", "h3.dev"])
        assert (coverage.bridged, coverage.total) == (3, 10)
        assert coverage.percent_text == "30.00%"

    def test_bridged_handles_outside_the_source_do_not_count(self):
        coverage = compute_coverage(["a.dev", "b.dev"], ["a.dev", "stranger.dev"])
        assert coverage.bridged == 1

    def test_empty_source(self):
        coverage = compute_coverage([], [])
        assert coverage.ratio is None
        assert coverage.percent_text == "n/a"

    def test_summarize_counts_statuses(self):
        summary = summarize(ROWS, [row.source for row in ROWS] + ["skipped.dev"], excluded=1)
        assert summary.total_listed == 5
        assert summary.newly_bridged == 2
        assert summary.already_followed == 1
        assert summary.not_bridged == 1
        assert summary.unknown == 1
        assert summary.excluded == 1
        assert (summary.coverage.bridged, summary.coverage.total) == (3, 6)
        assert summary.coverage.percent_text == "50.00%"


# ==============================================================================
# Report files
# ==============================================================================

@pytest.mark.integration
class TestReportMaterializer:
    def test_csv_lists_bridged_rows_sorted_by_handle(self, tmp_path):
        materializer = ReportMaterializer(tmp_path, Direction.TO_MASTODON)
        paths = materializer.write(ROWS, summarize(ROWS, [r.source for r in ROWS]))

        assert paths["csv"].name == "AccountHandles.csv"
        records = list(csv.reader(io.StringIO(paths["csv"].read_text(encoding="utf-8"))))
        assert tuple(records[0]) == REPORT_COLUMNS
        assert [r[0] for r in records[1:]] == [
            "@alice.bsky.social@bsky.brid.gy",
            "@Amy.dev@bsky.brid.gy",
            "@zed.dev@bsky.brid.gy",
        ]
        assert records[1][2] == "BridgedAlreadyFollowed"

    def test_omit_already_followed(self, tmp_path):
        materializer = ReportMaterializer(tmp_path, Direction.TO_MASTODON, omit_already_followed=True)
        text = materializer.render_csv(ROWS)
        assert "alice.bsky.social" not in text
        assert text.count("BridgedNew") == 2

    def test_rendering_twice_is_byte_identical(self, tmp_path):
        summary = summarize(ROWS, [r.source for r in ROWS])
        materializer = ReportMaterializer(tmp_path, Direction.TO_MASTODON)
        first = materializer.write(ROWS, summary)
        first_bytes = first["csv"].read_bytes(), first["html"].read_bytes()
        second = materializer.write(list(reversed(ROWS)), summary)
        assert (second["csv"].read_bytes(), second["html"].read_bytes()) == first_bytes

    def test_html_has_status_classes_and_escapes(self, tmp_path):
        rows = ROWS + [_bsky_row("<script>.dev", RowStatus.BRIDGED_NEW)]
        materializer = ReportMaterializer(tmp_path, Direction.TO_MASTODON)
        html = materializer.render_html(rows, summarize(rows, [r.source for r in rows]))
        assert 'class="status-new"' in html
        assert 'class="status-followed"' in html
        assert "<script>.dev" not in html
        assert "&lt;script&gt;.dev" in html
        assert "Bluesky → Mastodon" in html

    def test_mastodon_direction_file_name(self, tmp_path):
        assert ReportMaterializer(tmp_path, Direction.TO_BLUESKY).csv_path.name == "output.csv"


@pytest.mark.integration
class TestUnbridged:
    def test_unbridged_without_message(self, tmp_path):
        path = ReportMaterializer(tmp_path, Direction.TO_MASTODON).write_unbridged(ROWS)
        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines == [
            "Handle,Link",
            "bob.dev,https://bsky.app/profile/bob.dev",
            "carol.dev,https://bsky.app/profile/carol.dev",
        ]

    def test_unbridged_with_bridge_request_message(self, tmp_path):
        path = ReportMaterializer(tmp_path, Direction.TO_MASTODON).write_unbridged(ROWS, include_message=True)
        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "Handle,Link,Bridge Request Message"
        assert lines[1] == "bob.dev,https://bsky.app/profile/bob.dev,@bsky.brid.gy@bsky.brid.gy bob.dev"

    def test_mastodon_sources_link_to_their_instance(self, tmp_path):
        row = ResultRow(
            handle="bob.hachyderm.io.ap.brid.gy",
            link="https://bsky.app/profile/bob.hachyderm.io.ap.brid.gy",
            status=RowStatus.NOT_BRIDGED,
            source="bob@hachyderm.io",
        )
        text = ReportMaterializer(tmp_path, Direction.TO_BLUESKY).render_unbridged([row], include_message=True)
        assert text.splitlines()[1] == "bob@hachyderm.io,https://hachyderm.io/@bob,@ap.brid.gy bob@hachyderm.io"

"""Report artifacts: bridged-account CSV + HTML, the unbridged list, and coverage."""
from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from jinja2 import DictLoader, Environment

from .bridge.codec import bridge_request_message, source_profile_url
from .models import AccountIdentifier, Direction, ResultRow, RowStatus, normalize_handle

LOGGER = logging.getLogger(__name__)

REPORT_COLUMNS = ("Handle", "Link", "Status", "Search Link")
UNBRIDGED_FILENAME = "UnbridgedAccounts.csv"

# CSV file name per direction; both directions share the HTML name.
REPORT_CSV_NAMES: Dict[Direction, str] = {
    Direction.TO_BLUESKY: "output.csv",
    Direction.TO_MASTODON: "AccountHandles.csv",
}
REPORT_HTML_NAME = "output.html"

REPORT_TITLES: Dict[Direction, str] = {
    Direction.TO_BLUESKY: "Fediverse Radar: Mastodon → Bluesky Results",
    Direction.TO_MASTODON: "Fediverse Radar: Bluesky → Mastodon Results",
}

STATUS_CSS_CLASSES: Dict[RowStatus, str] = {
    RowStatus.BRIDGED_NEW: "status-new",
    RowStatus.BRIDGED_ALREADY_FOLLOWED: "status-followed",
    RowStatus.NOT_BRIDGED: "status-unbridged",
    RowStatus.UNKNOWN: "status-unknown",
}

DEFAULT_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{{ title }}</title>
  <style>
    body { font-family: system-ui, sans-serif; background: #f9f9fb; color: #222; margin: 0; padding: 2em; }
    h1 { color: #2b6cb0; }
    table { border-collapse: collapse; width: 100%; background: #fff; box-shadow: 0 2px 8px #0001; }
    th, td { border: 1px solid #e2e8f0; padding: 10px 8px; }
    th { background: #edf2fa; }
    a { color: #3182ce; text-decoration: none; }
    a:hover { text-decoration: underline; }
    .count { margin-bottom: 1em; color: #555; }
    .status-new td.status { color: #2f855a; font-weight: 600; }
    .status-followed td.status { color: #718096; }
    .status-unbridged td.status { color: #c53030; }
    .status-unknown td.status { color: #b7791f; }
  </style>
</head>
<body>
  <h1>{{ title }}</h1>
  <div class="count">{{ rows|length }} account{{ '' if rows|length == 1 else 's' }} found</div>
  <ul class="count">
    <li>Newly bridged: {{ summary.newly_bridged }}</li>
    <li>Already followed: {{ summary.already_followed }}</li>
    <li>Not bridged: {{ summary.not_bridged }}</li>
    <li>Unknown: {{ summary.unknown }}</li>
    <li>Excluded: {{ summary.excluded }}</li>
    <li>Coverage: {{ summary.coverage.bridged }} of {{ summary.coverage.total }} ({{ summary.coverage.percent_text }})</li>
  </ul>
  <table>
    <tr>
      <th>Handle</th>
      <th>Link</th>
      <th>Status</th>
      <th>Search</th>
    </tr>
    {%- for row in rows %}
    <tr class="{{ row.css_class }}">
      <td>{{ row.handle }}</td>
      <td><a href="{{ row.link }}" target="_blank">{{ row.link }}</a></td>
      <td class="status">{{ row.status }}</td>
      <td>{% if row.search_link %}<a href="{{ row.search_link }}" target="_blank">search</a>{% endif %}</td>
    </tr>
    {%- endfor %}
  </table>
</body>
</html>
"""


@dataclass(frozen=True)
class Coverage:
    bridged: int
    total: int

    @property
    def ratio(self) -> Optional[float]:
        if not self.total:
            return None
        return self.bridged / self.total

    @property
    def percent_text(self) -> str:
        ratio = self.ratio
        if ratio is None:
            return "n/a"
        return f"{ratio * 100:.2f}%"


def compute_coverage(source_handles: Iterable[str], bridged_handles: Iterable[str]) -> Coverage:
    """Share of distinct source handles that ended up bridged (new or already followed)."""

    sources = {key for key in (normalize_handle(h) for h in source_handles) if key}
    bridged = {key for key in (normalize_handle(h) for h in bridged_handles) if key}
    return Coverage(bridged=len(sources & bridged), total=len(sources))


@dataclass(frozen=True)
class RunSummary:
    total_listed: int
    newly_bridged: int
    already_followed: int
    not_bridged: int
    unknown: int
    excluded: int
    coverage: Coverage


def summarize(rows: Sequence[ResultRow], source_keys: Iterable[str], excluded: int = 0) -> RunSummary:
    counts = {status: 0 for status in RowStatus}
    for row in rows:
        counts[row.status] += 1
    bridged_sources = [row.source for row in rows if row.status.is_bridged and row.source]
    return RunSummary(
        total_listed=len(rows),
        newly_bridged=counts[RowStatus.BRIDGED_NEW],
        already_followed=counts[RowStatus.BRIDGED_ALREADY_FOLLOWED],
        not_bridged=counts[RowStatus.NOT_BRIDGED],
        unknown=counts[RowStatus.UNKNOWN],
        excluded=excluded,
        coverage=compute_coverage(source_keys, bridged_sources),
    )


def _sorted(rows: Iterable[ResultRow]) -> List[ResultRow]:
    return sorted(rows, key=lambda row: (row.key, row.handle))


class ReportMaterializer:
    """Write the run's rows to disk. Output depends only on the rows passed in."""

    def __init__(
        self,
        output_dir: Path,
        direction: Direction,
        *,
        omit_already_followed: bool = False,
        template: Optional[str] = None,
    ) -> None:
        self.output_dir = output_dir
        self.direction = direction
        self.omit_already_followed = omit_already_followed
        self._env = Environment(
            loader=DictLoader({"report.html": template or DEFAULT_HTML_TEMPLATE}),
            autoescape=True,
        )

    @property
    def csv_path(self) -> Path:
        return self.output_dir / REPORT_CSV_NAMES[self.direction]

    @property
    def html_path(self) -> Path:
        return self.output_dir / REPORT_HTML_NAME

    @property
    def unbridged_path(self) -> Path:
        return self.output_dir / UNBRIDGED_FILENAME

    def listed_rows(self, rows: Iterable[ResultRow]) -> List[ResultRow]:
        wanted = {RowStatus.BRIDGED_NEW}
        if not self.omit_already_followed:
            wanted.add(RowStatus.BRIDGED_ALREADY_FOLLOWED)
        return _sorted(row for row in rows if row.status in wanted)

    def render_csv(self, rows: Sequence[ResultRow]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(REPORT_COLUMNS)
        for row in self.listed_rows(rows):
            writer.writerow((row.handle, row.link, row.status.value, row.search_link or ""))
        return buffer.getvalue()

    def render_html(self, rows: Sequence[ResultRow], summary: RunSummary) -> str:
        template = self._env.get_template("report.html")
        listed = [
            {
                "handle": row.handle,
                "link": row.link,
                "status": row.status.value,
                "search_link": row.search_link,
                "css_class": STATUS_CSS_CLASSES[row.status],
            }
            for row in self.listed_rows(rows)
        ]
        return template.render(title=REPORT_TITLES[self.direction], rows=listed, summary=summary)

    def write(self, rows: Sequence[ResultRow], summary: RunSummary) -> Dict[str, Path]:
        """Overwrite the CSV and HTML reports; raises OSError when the directory is unwritable."""

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.csv_path.write_text(self.render_csv(rows), encoding="utf-8")
        self.html_path.write_text(self.render_html(rows, summary), encoding="utf-8")
        LOGGER.info("Wrote %d bridged rows to %s", len(self.listed_rows(rows)), self.csv_path)
        return {"csv": self.csv_path, "html": self.html_path}

    def render_unbridged(self, rows: Sequence[ResultRow], include_message: bool = False) -> str:
        namespace = self.direction.source_namespace
        header = ["Handle", "Link"]
        if include_message:
            header.append("Bridge Request Message")

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(header)
        seen = set()
        unbridged = [row for row in rows if not row.status.is_bridged and row.source]
        for row in sorted(unbridged, key=lambda r: (normalize_handle(r.source) or "", r.source)):
            key = normalize_handle(row.source)
            if key in seen:
                continue
            seen.add(key)
            source = row.source.strip().lstrip("@")
            record = [source, source_profile_url(AccountIdentifier(source, namespace))]
            if include_message:
                record.append(bridge_request_message(self.direction, source))
            writer.writerow(record)
        return buffer.getvalue()

    def write_unbridged(self, rows: Sequence[ResultRow], include_message: bool = False) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.unbridged_path.write_text(self.render_unbridged(rows, include_message), encoding="utf-8")
        LOGGER.info("Wrote unbridged account list to %s", self.unbridged_path)
        return self.unbridged_path

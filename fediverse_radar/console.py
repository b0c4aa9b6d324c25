"""Plain console output for radar runs."""
from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional

from .batch.observability import RunRuntime, now_utc
from .models import Direction
from .reporting import RunSummary

CHECK = "✓"
CROSS = "✗"
RULE = "=" * 72

_HEADLINES = {
    Direction.TO_BLUESKY: "masto_to_bsky",
    Direction.TO_MASTODON: "bsky_to_masto",
}


def print_header(*, direction: Direction, source: str, check_instance: Optional[str], total: int) -> None:
    print(_HEADLINES[direction])
    print(RULE)
    print(f"Generated: {now_utc()}")
    print(f"Source: {source}")
    if check_instance:
        print(f"Check instance: {check_instance}")
    print(f"Accounts: {total}")
    print(RULE)


def coverage_line(direction: Direction, summary: RunSummary) -> str:
    target = "Bluesky" if direction is Direction.TO_BLUESKY else "Mastodon"
    coverage = summary.coverage
    return (
        f"{coverage.bridged} of {coverage.total} followed accounts are reachable on "
        f"{target} ({coverage.percent_text})"
    )


def print_summary(
    *,
    direction: Direction,
    summary: RunSummary,
    runtime: Optional[RunRuntime] = None,
    artifacts: Optional[Mapping[str, Path]] = None,
) -> None:
    print("\n" + RULE)
    print("SUMMARY")
    print(RULE)
    print(f"{CHECK} newly bridged: {summary.newly_bridged}")
    print(f"{CHECK} already followed: {summary.already_followed}")
    print(f"{CROSS} not bridged: {summary.not_bridged}")
    if summary.unknown:
        print(f"{CROSS} unknown (errors or rate limits): {summary.unknown}")
    print(f"{CHECK} excluded: {summary.excluded}")
    if runtime is not None:
        counters = runtime.counters
        print(
            f"{CHECK} probed={counters['probed']} resumed={counters['resumed']} "
            f"rate_limited={counters['rate_limited']} requeued={counters['requeued']}"
        )
    print(f"{CHECK} {coverage_line(direction, summary)}")
    for label, path in (artifacts or {}).items():
        print(f"{CHECK} {label} written: {path}")


def print_failure(message: str) -> None:
    print(f"{CROSS} {message}")

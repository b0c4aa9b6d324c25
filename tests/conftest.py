"""Shared pytest configuration and fixtures for the test suite.

This module centralizes:
- Path setup so ``fediverse_radar`` imports without an install
- Pytest markers for test categorization (unit, integration, property)
- Common fixtures for configs, exports and fake probers
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest


# ==============================================================================
# Path Setup - Ensures fediverse_radar/ is importable
# ==============================================================================

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fediverse_radar.config import RadarConfig  # noqa: E402
from fediverse_radar.errors import RateLimitedError  # noqa: E402
from fediverse_radar.models import AccountIdentifier, ExistenceResult, ProbeState  # noqa: E402


# ==============================================================================
# Pytest Configuration
# ==============================================================================

def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers",
        "unit: Fast tests with no I/O (mocked dependencies)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Tests touching the file system or a mocked network transport",
    )
    config.addinivalue_line(
        "markers",
        "property: Hypothesis property-based tests",
    )


# ==============================================================================
# Config Fixtures
# ==============================================================================

@pytest.fixture
def radar_config(tmp_path) -> RadarConfig:
    """Config with pacing disabled and a check instance set."""
    return RadarConfig(
        check_instance="mastodon.example",
        fallback_instances=("backup.example",),
        request_pause_seconds=0.0,
        rate_limit_backoff_seconds=0.0,
        transient_retries=0,
        output_dir=tmp_path / "out",
    )


# ==============================================================================
# Fake Prober
# ==============================================================================

class FakeProber:
    """Scripted prober.

    ``outcomes`` maps a lowercase bridged identifier to a list of outcomes that
    are consumed one per call; each outcome is a ProbeState or an exception
    instance to raise. Unlisted identifiers come back ABSENT.
    """

    def __init__(self, outcomes: Optional[Dict[str, List[object]]] = None) -> None:
        self.outcomes = {key: list(values) for key, values in (outcomes or {}).items()}
        self.calls: List[tuple] = []

    async def probe(self, identifier: AccountIdentifier, instance: Optional[str] = None) -> ExistenceResult:
        self.calls.append((identifier.key, instance))
        queue = self.outcomes.get(identifier.key)
        outcome = queue.pop(0) if queue else ProbeState.ABSENT
        if isinstance(outcome, Exception):
            raise outcome
        return ExistenceResult(identifier, outcome, detail=instance)


@pytest.fixture
def fake_prober_factory():
    return FakeProber


@pytest.fixture
def rate_limited():
    def _make(instance: str = "mastodon.example", retry_after: Optional[float] = 0.0) -> RateLimitedError:
        return RateLimitedError(instance, retry_after)
    return _make


# ==============================================================================
# Export Fixtures
# ==============================================================================

@pytest.fixture
def mastodon_export(tmp_path) -> Path:
    path = tmp_path / "following_accounts.csv"
    path.write_text(
        "Account address,Show boosts,Notify on new posts,Languages\n"
        "jo_hn@mastodon.social,true,false,\n"
        "alice.bsky.social@bsky.brid.gy,true,false,\n"
        "bob@hachyderm.io,true,false,\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def follow_record_export(tmp_path) -> Path:
    """atproto export layout: <root>/did-plc-abc/app.bsky.graph.follow/<rkey>.json"""
    record_dir = tmp_path / "export" / "did-plc-abc" / "app.bsky.graph.follow"
    record_dir.mkdir(parents=True)
    for index, did in enumerate(("did:plc:one", "did:plc:two", "did:plc:three")):
        (record_dir / f"3k{index}.json").write_text(
            json.dumps({"$type": "app.bsky.graph.follow", "subject": did, "createdAt": "2024-01-01T00:00:00Z"}),
            encoding="utf-8",
        )
    (record_dir / "broken.json").write_text("{not json", encoding="utf-8")
    return tmp_path / "export"

"""End-to-end runs for both bridge directions.

Each flow validates its inputs and configuration first (raising
ConfigurationError / InputError before any request goes out), then gathers
source identifiers, optionally builds the already-followed set, probes every
identifier through the BatchRunner, and writes the reports.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .batch.checkpoint import CheckpointWriter, load_resume_state
from .batch.observability import RunRuntime
from .batch.runner import BatchRunner, InstanceRotator, Prober
from .config import RadarConfig
from .console import print_header, print_summary
from .errors import InputError
from .exports import (
    DEFAULT_HANDLE_CACHE,
    dedupe_handles,
    find_follow_record_dir,
    follow_set_from_export,
    read_follow_record_subjects,
    read_handle_cache,
    read_mastodon_export,
    write_handle_cache,
)
from .models import AccountIdentifier, Direction, FollowSet, Namespace, ResultRow
from .remote.follows import BlueskyFollowResolver, MastodonFollowResolver, build_session, owner_identifier
from .remote.prober import BlueskyProfileProber, MastodonSearchProber, build_async_client
from .reporting import ReportMaterializer, RunSummary, summarize

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MastoToBskyOptions:
    export_csv: Path
    actor: Optional[str] = None
    omit_followed: bool = False
    confirm_profile_page: bool = False
    probe_followed: bool = False
    resume: bool = False


@dataclass(frozen=True)
class BskyToMastoOptions:
    export_dir: Optional[Path] = None
    use_cached_handles: bool = False
    handle_cache: Optional[Path] = None
    actor: Optional[str] = None
    limit: Optional[int] = None
    following_export: Optional[Path] = None
    mastodon_account: Optional[str] = None
    omit_followed: bool = False
    unbridged: bool = False
    with_message: bool = False
    probe_followed: bool = False
    resume: bool = False


@dataclass
class FlowOutcome:
    direction: Direction
    rows: List[ResultRow]
    summary: RunSummary
    runtime: RunRuntime
    artifacts: Dict[str, Path] = field(default_factory=dict)


def checkpoint_path(config: RadarConfig, direction: Direction) -> Path:
    return config.output_dir / f"{direction.value}.checkpoint.csv"


# ==============================================================================
# Shared plumbing
# ==============================================================================


async def _probe_all(
    config: RadarConfig,
    direction: Direction,
    identifiers: Sequence[AccountIdentifier],
    runtime: RunRuntime,
    *,
    follow_set: Optional[FollowSet],
    resume: bool,
    probe_followed: bool = False,
    confirm_profile_page: bool = False,
) -> List[ResultRow]:
    resumed_rows: Dict[str, ResultRow] = {}
    if resume:
        state = load_resume_state(checkpoint_path(config, direction))
        for note in state.notes:
            LOGGER.info(note)
        resumed_rows = state.rows

    if direction is Direction.TO_BLUESKY:
        rotator = InstanceRotator((), config.rotate_after_checks)
    else:
        rotator = InstanceRotator(config.instances, config.rotate_after_checks)

    async with build_async_client(config) as client:
        prober: Prober
        if direction is Direction.TO_BLUESKY:
            prober = BlueskyProfileProber(client, config, confirm_profile_page=confirm_profile_page)
        else:
            prober = MastodonSearchProber(client, config)
        with CheckpointWriter(checkpoint_path(config, direction), append=resume) as checkpoint:
            runner = BatchRunner(
                config,
                prober,
                follow_set=follow_set,
                probe_followed=probe_followed,
                rotator=rotator,
                checkpoint=checkpoint,
                runtime=runtime,
                resumed_rows=resumed_rows,
            )
            return await runner.run(identifiers, config.concurrency)


def _finish(
    config: RadarConfig,
    direction: Direction,
    identifiers: Sequence[AccountIdentifier],
    rows: List[ResultRow],
    runtime: RunRuntime,
    *,
    omit_followed: bool,
    unbridged: bool = False,
    with_message: bool = False,
) -> FlowOutcome:
    summary = summarize(
        rows,
        (identifier.raw for identifier in identifiers),
        excluded=runtime.counters["excluded"],
    )
    LOGGER.debug("Run snapshot: %s", json.dumps(runtime.snapshot(), sort_keys=True))
    outcome = FlowOutcome(direction=direction, rows=rows, summary=summary, runtime=runtime)
    materializer = ReportMaterializer(config.output_dir, direction, omit_already_followed=omit_followed)
    try:
        outcome.artifacts.update(materializer.write(rows, summary))
        if unbridged:
            outcome.artifacts["unbridged"] = materializer.write_unbridged(rows, include_message=with_message)
    finally:
        print_summary(direction=direction, summary=summary, runtime=runtime, artifacts=outcome.artifacts)
    return outcome


# ==============================================================================
# Mastodon -> Bluesky
# ==============================================================================


def _bluesky_follow_set(config: RadarConfig, actor: str, runtime: RunRuntime) -> FollowSet:
    with build_session(config) as session:
        resolver = BlueskyFollowResolver(session, config, event_callback=runtime.observe_remote_event)
        follow_set = resolver.resolve(owner_identifier(actor, Namespace.BLUESKY))
    if not follow_set.complete:
        LOGGER.warning("Follow list for %s is partial (%d handles); some rows may read as new", actor, len(follow_set))
    return follow_set


def run_masto_to_bsky(config: RadarConfig, options: MastoToBskyOptions) -> FlowOutcome:
    direction = Direction.TO_BLUESKY
    identifiers = read_mastodon_export(options.export_csv)
    actor = options.actor or config.target_account
    if options.omit_followed and not actor:
        config.require_target_account()

    print_header(direction=direction, source=str(options.export_csv), check_instance=None, total=len(identifiers))

    runtime = RunRuntime()
    follow_set = _bluesky_follow_set(config, actor, runtime) if actor else None
    rows = asyncio.run(
        _probe_all(
            config,
            direction,
            identifiers,
            runtime,
            follow_set=follow_set,
            resume=options.resume,
            probe_followed=options.probe_followed,
            confirm_profile_page=options.confirm_profile_page,
        )
    )
    return _finish(config, direction, identifiers, rows, runtime, omit_followed=options.omit_followed)


# ==============================================================================
# Bluesky -> Mastodon
# ==============================================================================


def _handle_cache_path(config: RadarConfig, options: BskyToMastoOptions) -> Path:
    return options.handle_cache or config.output_dir / DEFAULT_HANDLE_CACHE


def gather_bluesky_handles(config: RadarConfig, options: BskyToMastoOptions) -> List[str]:
    """Collect the followed Bluesky handles from the cache, an export directory or a live crawl."""

    cache = _handle_cache_path(config, options)
    if options.use_cached_handles:
        handles = read_handle_cache(cache)
        LOGGER.info("Loaded %d handles from %s", len(handles), cache)
        handles = dedupe_handles(handles)
        return handles[: options.limit] if options.limit else handles

    if options.export_dir is not None:
        record_dir = find_follow_record_dir(options.export_dir)
        subjects = read_follow_record_subjects(record_dir, limit=options.limit)
        LOGGER.info("Resolving %d follow records from %s", len(subjects), record_dir)
        with build_session(config) as session:
            resolver = BlueskyFollowResolver(session, config)
            handles = resolver.resolve_handles(subjects, progress=_log_resolve_progress)
        handles = dedupe_handles(handles)
        write_handle_cache(handles, cache)
        return handles

    actor = options.actor or config.target_account
    if not actor:
        raise InputError("Nothing to read: pass an export directory, --use-cached-handles or --actor")
    with build_session(config) as session:
        follow_set = BlueskyFollowResolver(session, config).resolve(
            owner_identifier(actor, Namespace.BLUESKY), max_entries=options.limit
        )
    handles = sorted(follow_set.members)
    write_handle_cache(handles, cache)
    return handles


def _log_resolve_progress(index: int, total: int) -> None:
    if index == total or index % 50 == 0:
        LOGGER.info("Resolved %d/%d follow records", index, total)


def _mastodon_follow_set(config: RadarConfig, options: BskyToMastoOptions) -> Optional[FollowSet]:
    export = options.following_export or config.following_export
    if export is not None:
        return follow_set_from_export(export)
    if options.mastodon_account:
        owner = owner_identifier(options.mastodon_account, Namespace.MASTODON)
        with build_session(config) as session:
            return MastodonFollowResolver(session, config).resolve(owner)
    return None


def run_bsky_to_masto(config: RadarConfig, options: BskyToMastoOptions) -> FlowOutcome:
    direction = Direction.TO_MASTODON
    check_instance = config.require_check_instance()
    if options.use_cached_handles:
        cache = _handle_cache_path(config, options)
        if not cache.is_file():
            raise InputError(f"Cached handle list not found: {cache}")
    elif options.export_dir is not None:
        find_follow_record_dir(options.export_dir)
    export = options.following_export or config.following_export
    if export is not None and not export.is_file():
        raise InputError(f"Following export not found: {export}")

    handles = gather_bluesky_handles(config, options)
    identifiers = [AccountIdentifier(handle, Namespace.BLUESKY) for handle in handles]
    print_header(
        direction=direction,
        source=str(options.export_dir or _handle_cache_path(config, options)),
        check_instance=check_instance,
        total=len(identifiers),
    )

    runtime = RunRuntime()
    follow_set = _mastodon_follow_set(config, options)
    rows = asyncio.run(
        _probe_all(
            config,
            direction,
            identifiers,
            runtime,
            follow_set=follow_set,
            resume=options.resume,
            probe_followed=options.probe_followed,
        )
    )
    return _finish(
        config,
        direction,
        identifiers,
        rows,
        runtime,
        omit_followed=options.omit_followed,
        unbridged=options.unbridged,
        with_message=options.with_message,
    )


# ==============================================================================
# Follow-list export
# ==============================================================================


def export_follows(
    config: RadarConfig,
    actor: str,
    *,
    relation: str = "follows",
    output: Optional[Path] = None,
    limit: Optional[int] = None,
) -> Path:
    """Crawl ``actor``'s follows (or followers) and write them as a handle list."""

    target = output or config.output_dir / DEFAULT_HANDLE_CACHE
    with build_session(config) as session:
        follow_set = BlueskyFollowResolver(session, config).resolve(
            owner_identifier(actor, Namespace.BLUESKY), relation=relation, max_entries=limit
        )
    if not follow_set.complete:
        LOGGER.warning("Crawl of %s for %s stopped early; list is partial", relation, actor)
    return write_handle_cache(sorted(follow_set.members), target)

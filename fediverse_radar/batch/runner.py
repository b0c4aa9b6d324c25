"""Bounded-concurrency existence checking over a queue of follow identifiers."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Iterable, List, Mapping, Optional, Protocol, Sequence

from ..bridge.codec import bridged_display, convert, search_url
from ..bridge.exclusion import is_excluded
from ..config import RadarConfig
from ..errors import MalformedIdentifierError, RateLimitedError
from ..models import (
    AccountIdentifier,
    ConversionRecord,
    ExistenceResult,
    FollowSet,
    ProbeState,
    ResultRow,
    RowStatus,
)
from .checkpoint import CheckpointWriter
from .observability import RunRuntime

LOGGER = logging.getLogger(__name__)

MAX_RATE_LIMIT_BACKOFF_SECONDS = 60.0

ProgressCallback = Callable[[int, int, ResultRow], None]


class Prober(Protocol):
    async def probe(self, identifier: AccountIdentifier, instance: Optional[str]) -> ExistenceResult:
        ...


@dataclass(frozen=True)
class WorkItem:
    record: ConversionRecord
    attempts: int = 0
    not_before: float = 0.0

    @property
    def key(self) -> str:
        return self.record.derived.key


class InstanceRotator:
    """Round-robin over check instances.

    Advances after ``rotate_after`` cumulative checks on the current instance
    and immediately on a rate-limit signal from the current instance. Signals
    about an instance that is no longer current are ignored, so several
    in-flight 429s from one instance rotate only once. With no instances
    configured ``current`` is None (Bluesky probes need no instance).
    """

    def __init__(self, instances: Sequence[str], rotate_after: int) -> None:
        self._instances = list(instances)
        self._rotate_after = max(rotate_after, 1)
        self._index = 0
        self._checks = 0

    @property
    def current(self) -> Optional[str]:
        if not self._instances:
            return None
        return self._instances[self._index]

    def record_check(self, instance: Optional[str]) -> None:
        if instance != self.current:
            return
        self._checks += 1
        if self._checks >= self._rotate_after:
            self.advance("check budget reached")

    def on_rate_limited(self, instance: Optional[str]) -> None:
        if instance != self.current:
            return
        self.advance(f"rate limited by {instance}")

    def advance(self, reason: str) -> None:
        self._checks = 0
        if len(self._instances) < 2:
            return
        previous = self.current
        self._index = (self._index + 1) % len(self._instances)
        LOGGER.info("Rotating check instance %s -> %s (%s)", previous, self.current, reason)


def classify(
    record: ConversionRecord,
    result: ExistenceResult,
    follow_set: Optional[FollowSet],
    *,
    link_instance: Optional[str] = None,
) -> ResultRow:
    """Turn one probe outcome into the row the report consumes."""

    if result.state is ProbeState.EXISTS:
        if follow_set is not None and record.derived.key in follow_set:
            status = RowStatus.BRIDGED_ALREADY_FOLLOWED
        else:
            status = RowStatus.BRIDGED_NEW
    elif result.state is ProbeState.ABSENT:
        status = RowStatus.NOT_BRIDGED
    else:
        status = RowStatus.UNKNOWN
    return _row(record, status, link_instance=link_instance, detail=result.detail)


def _row(
    record: ConversionRecord,
    status: RowStatus,
    *,
    link_instance: Optional[str],
    detail: Optional[str] = None,
) -> ResultRow:
    return ResultRow(
        handle=bridged_display(record.derived),
        link=record.profile_url,
        status=status,
        search_link=search_url(record.derived, link_instance),
        source=record.source.raw,
        detail=detail,
    )


class BatchRunner:
    """Drive conversion + probing over a work queue.

    ``concurrency_limit`` worker coroutines pop items from the left of a deque,
    so probes start in queue order and never more than the limit are in
    flight. Rate-limited items go back on the right of the deque with their
    attempt count raised and a ``not_before`` time set from the backoff; no
    worker picks them up earlier. Past ``max_rate_limit_retries`` they finish
    as ``Unknown``. Rows come back in completion order.
    """

    def __init__(
        self,
        config: RadarConfig,
        prober: Prober,
        *,
        follow_set: Optional[FollowSet] = None,
        probe_followed: bool = False,
        rotator: Optional[InstanceRotator] = None,
        checkpoint: Optional[CheckpointWriter] = None,
        runtime: Optional[RunRuntime] = None,
        progress: Optional[ProgressCallback] = None,
        resumed_rows: Optional[Mapping[str, ResultRow]] = None,
    ) -> None:
        self._config = config
        self._prober = prober
        self._follow_set = follow_set
        self._probe_followed = probe_followed
        self._rotator = rotator or InstanceRotator((), config.rotate_after_checks)
        self._checkpoint = checkpoint
        self.runtime = runtime or RunRuntime()
        self._progress = progress or _log_progress
        self._resumed = dict(resumed_rows or {})
        self._queue: Deque[WorkItem] = deque()
        self._rows: List[ResultRow] = []
        self._total = 0

    def prepare(self, identifiers: Iterable[AccountIdentifier]) -> List[ResultRow]:
        """Filter, convert and enqueue; returns rows reused from a resumed checkpoint."""

        seen = set()
        reused: List[ResultRow] = []
        for identifier in identifiers:
            if is_excluded(identifier.raw):
                self.runtime.count("excluded")
                LOGGER.debug("Excluded %s", identifier.raw)
                continue
            try:
                record = convert(identifier, self._config.link_instance)
            except MalformedIdentifierError as exc:
                self.runtime.count("malformed")
                LOGGER.warning("Skipping %s", exc)
                continue
            key = record.derived.key
            if key in seen:
                self.runtime.count("duplicates")
                continue
            seen.add(key)
            if key in self._resumed:
                self.runtime.count("resumed")
                reused.append(self._resumed[key])
                continue
            self._queue.append(WorkItem(record))
        return reused

    async def run(
        self,
        identifiers: Iterable[AccountIdentifier],
        concurrency_limit: Optional[int] = None,
    ) -> List[ResultRow]:
        limit = max(concurrency_limit or self._config.concurrency, 1)
        self._rows = self.prepare(identifiers)
        self._total = len(self._queue)
        self.runtime.begin_run(self._total)
        LOGGER.info(
            "RUN start pending=%d resumed=%d excluded=%d concurrency=%d",
            self._total,
            self.runtime.counters["resumed"],
            self.runtime.counters["excluded"],
            limit,
        )

        workers = [asyncio.create_task(self._worker()) for _ in range(min(limit, max(self._total, 1)))]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            self.runtime.mark_interrupted("cancelled")
            raise

        self.runtime.mark_complete()
        return list(self._rows)

    async def _worker(self) -> None:
        while self._queue:
            item = self._take()
            wait = item.not_before - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            row = await self._process(item)
            if row is not None:
                self._finish(row)

    def _take(self) -> WorkItem:
        """Pop the leftmost item that is due; if none is, the one due soonest."""

        now = time.monotonic()
        for item in self._queue:
            if item.not_before <= now:
                self._queue.remove(item)
                return item
        soonest = min(self._queue, key=lambda queued: queued.not_before)
        self._queue.remove(soonest)
        return soonest

    async def _process(self, item: WorkItem) -> Optional[ResultRow]:
        record = item.record
        link_instance = self._config.link_instance

        if (
            self._follow_set is not None
            and not self._probe_followed
            and record.derived.key in self._follow_set
        ):
            self.runtime.count("short_circuited")
            return _row(record, RowStatus.BRIDGED_ALREADY_FOLLOWED, link_instance=link_instance)

        instance = self._rotator.current
        try:
            result = await self._prober.probe(record.derived, instance)
        except RateLimitedError as exc:
            self.runtime.observe_rate_limit(item.key, exc.instance, item.attempts + 1)
            if item.attempts >= self._config.max_rate_limit_retries:
                self.runtime.count("gave_up")
                return _row(
                    record,
                    RowStatus.UNKNOWN,
                    link_instance=link_instance,
                    detail=f"rate limited after {item.attempts + 1} attempts",
                )
            self._rotator.on_rate_limited(exc.instance)
            delay = self._backoff(exc)
            self._queue.append(WorkItem(record, item.attempts + 1, time.monotonic() + delay))
            self.runtime.count("requeued")
            LOGGER.info("requeue %s (attempt %d, retry in %.1fs)", record.derived.raw, item.attempts + 1, delay)
            return None

        self.runtime.count("probed")
        if result.state is ProbeState.ERROR:
            self.runtime.count("errors")
        self._rotator.record_check(instance)
        return classify(record, result, self._follow_set, link_instance=link_instance)

    def _backoff(self, exc: RateLimitedError) -> float:
        if exc.retry_after is not None:
            return min(exc.retry_after, MAX_RATE_LIMIT_BACKOFF_SECONDS)
        return self._config.rate_limit_backoff_seconds

    def _finish(self, row: ResultRow) -> None:
        self._rows.append(row)
        completed = self.runtime.complete_item(row.key, row.status.value)
        if self._checkpoint is not None:
            self._checkpoint.append(row)
        self._progress(completed, self._total, row)


def _log_progress(completed: int, total: int, row: ResultRow) -> None:
    if row.detail and not row.status.is_bridged:
        LOGGER.info("[%d/%d] %s -> %s (%s)", completed, total, row.handle, row.status.value, row.detail)
    else:
        LOGGER.info("[%d/%d] %s -> %s", completed, total, row.handle, row.status.value)

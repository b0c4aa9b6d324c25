"""Runtime counters and recent-event history for a batch run."""
from __future__ import annotations

import logging
import time
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Optional


def now_utc() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class RunRuntime:
    COUNTERS = (
        "excluded",
        "malformed",
        "duplicates",
        "resumed",
        "short_circuited",
        "probed",
        "rate_limited",
        "requeued",
        "gave_up",
        "errors",
    )

    def __init__(self, *, logger: Optional[logging.Logger] = None, max_event_history: int = 250) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.start_time_utc = now_utc()
        self.start_monotonic = time.monotonic()
        self.status = "pending"
        self.total_pending = 0
        self.completed = 0
        self.counters: Dict[str, int] = {name: 0 for name in self.COUNTERS}
        self._event_history: Deque[Dict[str, object]] = deque(maxlen=max(1, max_event_history))

    def count(self, name: str, amount: int = 1) -> None:
        self.counters[name] += amount

    def begin_run(self, total_pending: int) -> None:
        self.status = "running"
        self.total_pending = total_pending
        self.log_event("run_start", total_pending=total_pending)
        self.logger.debug("run_start pending=%s counters=%s", total_pending, self.counters)

    def complete_item(self, key: str, status: str) -> int:
        self.completed += 1
        self.log_event("item_complete", key=key, status=status, completed=self.completed)
        return self.completed

    def observe_rate_limit(self, key: str, instance: str, attempts: int) -> None:
        self.count("rate_limited")
        self.log_event("rate_limited", key=key, instance=instance, attempts=attempts)
        self.logger.warning("rate_limited key=%s instance=%s attempts=%s", key, instance, attempts)

    def observe_remote_event(self, event: Dict[str, object]) -> None:
        event_name = str(event.get("event", "remote_event"))
        self.log_event(event_name, **event)
        if event_name == "request_exception":
            self.logger.error("remote_exception relation=%s detail=%s", event.get("relation"), event.get("detail"))
        elif event_name == "request_failed":
            self.logger.warning("remote_response relation=%s status=%s", event.get("relation"), event.get("status_code"))
        else:
            self.logger.debug(
                "remote_page relation=%s page=%s gathered=%s",
                event.get("relation"),
                event.get("page_index"),
                event.get("gathered_count"),
            )

    def mark_complete(self) -> None:
        self.status = "complete"
        self.log_event("run_complete")
        self.logger.debug("run_complete completed=%s counters=%s", self.completed, self.counters)

    def mark_interrupted(self, reason: str) -> None:
        self.status = "interrupted"
        self.log_event("run_interrupted", reason=reason)
        self.logger.warning("run_interrupted reason=%s completed=%s", reason, self.completed)

    def snapshot(self) -> Dict[str, object]:
        return {
            "status": self.status,
            "started_at": self.start_time_utc,
            "updated_at": now_utc(),
            "uptime_seconds": int(time.monotonic() - self.start_monotonic),
            "total_pending": self.total_pending,
            "completed": self.completed,
            **self.counters,
            "recent_events": list(self._event_history),
        }

    def log_event(self, event_name: str, **payload: object) -> None:
        event_payload: Dict[str, object] = {"at": now_utc(), "event": event_name}
        event_payload.update(payload)
        self._event_history.append(event_payload)

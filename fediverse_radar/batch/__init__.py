"""Queue-driven probing with checkpoints and run counters."""

from __future__ import annotations

from .checkpoint import CheckpointWriter, ResumeState, load_resume_state
from .observability import RunRuntime
from .runner import BatchRunner, InstanceRotator, WorkItem, classify

__all__ = [
    "BatchRunner",
    "CheckpointWriter",
    "InstanceRotator",
    "ResumeState",
    "RunRuntime",
    "WorkItem",
    "classify",
    "load_resume_state",
]

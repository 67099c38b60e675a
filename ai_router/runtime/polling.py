"""
Polling of provider-owned asynchronous jobs.

A job is tracked by a small, serializable ``PollState``. ``JobPoller.step``
advances that state by exactly one sleep-then-fetch cycle, and ``run`` keeps
stepping until the state is terminal. Because the state is plain data, a
caller can persist it between steps and resume later with a fresh poller.

Deadlines come from ``PollPolicy``: a wall-clock budget measured from the
first step (``timeout_seconds``), a number of fetches (``max_attempts``), or
both.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ai_router.schema.values import as_str
from shared.logger import get_logger


class JobPhase(str, Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"
    canceled = "canceled"
    timed_out = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not JobPhase.pending


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float
    timeout_seconds: Optional[float] = None
    max_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.timeout_seconds is None and self.max_attempts is None:
            raise ValueError("PollPolicy needs a timeout_seconds or max_attempts deadline")


class PollState(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    phase: JobPhase = JobPhase.pending
    attempts: int = 0
    started_at: float
    last_status: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    cancelled_locally: bool = False


class Scheduler(Protocol):
    """Clock and sleep used by the poller; swapped for a fake clock in tests."""

    def now(self) -> float:
        """Current wall-clock time in seconds."""

    async def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds``."""


class AsyncioScheduler:
    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


JobFetcher = Callable[[str], Awaitable[Mapping[str, Any]]]
PhaseClassifier = Callable[[Mapping[str, Any]], JobPhase]


class JobPoller:
    def __init__(
        self,
        fetch: JobFetcher,
        classify: PhaseClassifier,
        policy: PollPolicy,
        *,
        scheduler: Optional[Scheduler] = None,
        on_update: Optional[Callable[[PollState], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.fetch = fetch
        self.classify = classify
        self.policy = policy
        self.scheduler = scheduler or AsyncioScheduler()
        self.on_update = on_update
        self.logger = logger or get_logger(__name__)
        self._cancelled = False

    def cancel(self) -> None:
        """
        Stop polling at the next step. The provider-side job is not cancelled.
        """
        self._cancelled = True

    def start(self, job_id: str, payload: Optional[Mapping[str, Any]] = None) -> PollState:
        phase = self.classify(payload) if payload else JobPhase.pending
        return PollState(
            job_id=job_id,
            phase=phase,
            started_at=self.scheduler.now(),
            last_status=as_str((payload or {}).get("status")) or None,
            payload=dict(payload or {}),
        )

    def deadline_reached(self, state: PollState) -> bool:
        if self.policy.max_attempts is not None and state.attempts >= self.policy.max_attempts:
            return True
        if self.policy.timeout_seconds is not None:
            return self.scheduler.now() - state.started_at > self.policy.timeout_seconds
        return False

    async def step(self, state: PollState) -> PollState:
        if state.phase.is_terminal:
            return state
        if self._cancelled:
            return state.model_copy(update={"phase": JobPhase.canceled, "cancelled_locally": True})
        if self.deadline_reached(state):
            return state.model_copy(update={"phase": JobPhase.timed_out})

        await self.scheduler.sleep(self.policy.interval_seconds)
        payload = await self.fetch(state.job_id)
        updated = state.model_copy(
            update={
                "attempts": state.attempts + 1,
                "phase": self.classify(payload),
                "last_status": as_str(payload.get("status")) or None,
                "payload": dict(payload),
            }
        )
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("Job %s attempt %s: %s", updated.job_id, updated.attempts, updated.last_status)
        if self.on_update is not None:
            self.on_update(updated)
        return updated

    async def run(self, state: PollState) -> PollState:
        while not state.phase.is_terminal:
            state = await self.step(state)
        return state


__all__ = [
    "AsyncioScheduler",
    "JobPhase",
    "JobPoller",
    "PollPolicy",
    "PollState",
    "Scheduler",
]

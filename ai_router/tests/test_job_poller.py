from __future__ import annotations

from typing import Any, Dict, List

import pytest

from ai_router.runtime.polling import JobPhase, JobPoller, PollPolicy, PollState
from ai_router.tests.fakes import FakeScheduler


def _classify(payload) -> JobPhase:
    return {
        "done": JobPhase.succeeded,
        "failed": JobPhase.failed,
    }.get(payload.get("status"), JobPhase.pending)


class ScriptedJob:
    def __init__(self, statuses: List[str]) -> None:
        self.statuses = list(statuses)
        self.fetched: List[str] = []

    async def __call__(self, job_id: str) -> Dict[str, Any]:
        self.fetched.append(job_id)
        status = self.statuses.pop(0) if self.statuses else "running"
        return {"id": job_id, "status": status}


def test_policy_requires_a_deadline() -> None:
    with pytest.raises(ValueError):
        PollPolicy(interval_seconds=1)
    with pytest.raises(ValueError):
        PollPolicy(interval_seconds=-1, max_attempts=3)


@pytest.mark.asyncio
async def test_run_polls_until_terminal() -> None:
    scheduler = FakeScheduler()
    job = ScriptedJob(["running", "running", "done"])
    updates: List[PollState] = []
    poller = JobPoller(job, _classify, PollPolicy(2, max_attempts=10), scheduler=scheduler, on_update=updates.append)

    state = await poller.run(poller.start("job-1", {"status": "starting"}))

    assert state.phase is JobPhase.succeeded
    assert state.attempts == 3
    assert scheduler.sleeps == [2, 2, 2]
    assert [item.last_status for item in updates] == ["running", "running", "done"]


@pytest.mark.asyncio
async def test_start_with_terminal_payload_does_not_poll() -> None:
    job = ScriptedJob([])
    poller = JobPoller(job, _classify, PollPolicy(1, max_attempts=1), scheduler=FakeScheduler())
    state = await poller.run(poller.start("job-1", {"status": "done"}))
    assert state.phase is JobPhase.succeeded
    assert job.fetched == []


@pytest.mark.asyncio
async def test_attempt_deadline() -> None:
    job = ScriptedJob([])
    poller = JobPoller(job, _classify, PollPolicy(5, max_attempts=3), scheduler=FakeScheduler())
    state = await poller.run(poller.start("job-1"))
    assert state.phase is JobPhase.timed_out
    assert state.attempts == 3
    assert len(job.fetched) == 3


@pytest.mark.asyncio
async def test_wall_clock_deadline() -> None:
    scheduler = FakeScheduler()
    poller = JobPoller(ScriptedJob([]), _classify, PollPolicy(2, timeout_seconds=5), scheduler=scheduler)
    state = await poller.run(poller.start("job-1"))
    assert state.phase is JobPhase.timed_out
    assert scheduler.now() - state.started_at == 6


@pytest.mark.asyncio
async def test_state_can_be_resumed_by_a_new_poller() -> None:
    job = ScriptedJob(["running", "done"])
    policy = PollPolicy(1, max_attempts=5)
    first = JobPoller(job, _classify, policy, scheduler=FakeScheduler())
    state = await first.step(first.start("job-1"))
    assert state.phase is JobPhase.pending

    restored = PollState.model_validate(state.model_dump())
    second = JobPoller(job, _classify, policy, scheduler=FakeScheduler())
    final = await second.run(restored)
    assert final.phase is JobPhase.succeeded
    assert final.attempts == 2


@pytest.mark.asyncio
async def test_cancel_stops_locally() -> None:
    job = ScriptedJob(["running"])
    poller = JobPoller(job, _classify, PollPolicy(1, max_attempts=5), scheduler=FakeScheduler())
    state = await poller.step(poller.start("job-1"))
    poller.cancel()
    state = await poller.run(state)
    assert state.phase is JobPhase.canceled
    assert state.cancelled_locally
    assert job.fetched == ["job-1"]

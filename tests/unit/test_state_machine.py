"""Unit tests for job status transitions and their metric side effects."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import msgspec
import pytest

from datagen.jobs.metrics import MetricsAggregator
from datagen.jobs.models import JobRecord, PeerShardState, ShardRange
from datagen.jobs.state_machine import InvalidTransitionError, JobStateMachine, can_transition, ensure_transition, shards_complete
from datagen.storage.job_store import JobStore
from datagen.storage.memory import MemoryStateStore


class StepClock:
  """Clock that advances one second per reading."""

  def __init__(self) -> None:
    self.current = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

  def __call__(self) -> datetime:
    self.current += timedelta(seconds=1)
    return self.current


def _job(status: str = "queued", peers: tuple[str, ...] = ("p1", "p2")) -> JobRecord:
  return JobRecord(
    id="job_1",
    owner="alice",
    title="Products",
    status=status,
    total_records=4,
    peers=list(peers),
    peer_count=len(peers),
    created_at="2026-03-01T12:00:00.000Z",
    updated_at="2026-03-01T12:00:00.000Z",
  )


def _shard(peer_id: str, start: int, end: int, *, ok: int = 0, failed: int = 0, result_cid: str | None = None) -> PeerShardState:
  return PeerShardState(peer_id=peer_id, assigned=end - start, range=ShardRange(start, end), generated_ok=ok, generated_failed=failed, result_cid=result_cid)


@pytest.fixture
def state() -> MemoryStateStore:
  return MemoryStateStore()


@pytest.fixture
def machine(state: MemoryStateStore) -> JobStateMachine:
  return JobStateMachine(job_store=JobStore(state), metrics=MetricsAggregator(state), clock=StepClock())


@pytest.mark.parametrize(
  ("current", "target", "allowed"),
  [
    ("queued", "running", True),
    ("queued", "failed", True),
    ("queued", "succeeded", False),
    ("running", "succeeded", True),
    ("running", "failed", True),
    ("running", "queued", False),
    ("succeeded", "failed", False),
    ("failed", "running", False),
  ],
)
def test_transition_table(current: str, target: str, allowed: bool) -> None:
  assert can_transition(current, target) is allowed


def test_ensure_transition_rejects_leaving_terminal_state() -> None:
  with pytest.raises(InvalidTransitionError):
    ensure_transition("succeeded", "running")


def test_shards_complete_requires_every_peer_with_result() -> None:
  done = _shard("p1", 0, 2, ok=2, result_cid="cid-1")
  assert not shards_complete([done], ["p1", "p2"])
  assert not shards_complete([done, _shard("p2", 2, 4, ok=2)], ["p1", "p2"])
  assert shards_complete([done, _shard("p2", 2, 4, ok=1, failed=1, result_cid="cid-2")], ["p1", "p2"])


@pytest.mark.anyio
async def test_start_moves_queued_job_to_running_once(machine: JobStateMachine, state: MemoryStateStore) -> None:
  store = JobStore(state)
  await store.create_job(_job())

  started = await machine.start("job_1")
  again = await machine.start("job_1")

  assert started is not None and started.status == "running"
  assert again is not None and again.job_started_at == started.job_started_at
  metrics = await MetricsAggregator(state).read()
  assert metrics.active_jobs == 1
  assert metrics.last_job_at == started.job_started_at


@pytest.mark.anyio
async def test_fail_from_queued_counts_failure_without_active_job(machine: JobStateMachine, state: MemoryStateStore) -> None:
  await JobStore(state).create_job(_job())

  failed = await machine.fail("job_1", "schema generation failed")

  assert failed is not None and failed.status == "failed"
  assert failed.error == "schema generation failed"
  metrics = await MetricsAggregator(state).read()
  assert (metrics.active_jobs, metrics.failed_jobs) == (0, 1)


@pytest.mark.anyio
async def test_terminal_jobs_ignore_further_transitions(machine: JobStateMachine, state: MemoryStateStore) -> None:
  store = JobStore(state)
  await store.create_job(_job())
  await machine.start("job_1")
  await machine.fail("job_1", "details missing")

  await machine.fail("job_1", "second failure")
  await machine.start("job_1")
  refreshed = await machine.refresh("job_1")

  assert refreshed is not None
  assert refreshed.status == "failed"
  assert refreshed.error == "details missing"
  metrics = await MetricsAggregator(state).read()
  assert (metrics.active_jobs, metrics.failed_jobs) == (0, 1)


@pytest.mark.anyio
async def test_refresh_aggregates_totals_until_all_shards_complete(machine: JobStateMachine, state: MemoryStateStore) -> None:
  store = JobStore(state)
  await store.create_job(_job())
  await machine.start("job_1")
  await store.set_shard("job_1", _shard("p1", 0, 2, ok=1, failed=1, result_cid="cid-1"))
  await store.set_shard("job_1", _shard("p2", 2, 4, ok=1))

  partial = await machine.refresh("job_1")
  assert partial is not None and partial.status == "running"
  assert (partial.total_ok, partial.total_failed, partial.total_generated) == (2, 1, 3)

  await store.set_shard("job_1", _shard("p2", 2, 4, ok=2, result_cid="cid-2"))
  finished = await machine.refresh("job_1")

  assert finished is not None and finished.status == "succeeded"
  assert finished.total_generated == 4
  assert finished.records_duration_ms is not None and finished.records_duration_ms > 0
  metrics = await MetricsAggregator(state).read()
  assert metrics.active_jobs == 0
  assert metrics.failed_jobs == 0
  summaries = await store.list_jobs_for_owner("alice")
  assert summaries[0].status == "succeeded"


@pytest.mark.anyio
async def test_refresh_of_queued_job_with_complete_shards_passes_through_running(machine: JobStateMachine, state: MemoryStateStore) -> None:
  store = JobStore(state)
  await store.create_job(_job(peers=("p1",)))
  await store.set_shard("job_1", _shard("p1", 0, 4, ok=4, result_cid="cid-1"))

  finished = await machine.refresh("job_1")

  assert finished is not None and finished.status == "succeeded"
  assert finished.job_started_at is not None
  metrics = await MetricsAggregator(state).read()
  assert metrics.active_jobs == 0


@pytest.mark.anyio
async def test_refresh_keeps_a_failure_recorded_while_it_reads_shards(state: MemoryStateStore, monkeypatch: pytest.MonkeyPatch) -> None:
  store = JobStore(state)
  machine = JobStateMachine(job_store=store, metrics=MetricsAggregator(state), clock=StepClock())
  await store.create_job(_job())
  await machine.start("job_1")
  await store.set_shard("job_1", _shard("p1", 0, 2, ok=2, result_cid="cid-1"))
  read_shards = store.list_shards

  async def list_shards_then_fail(job_id: str) -> list[PeerShardState]:
    shards = await read_shards(job_id)
    await JobStore(state).save_job(msgspec.structs.replace(_job(status="failed"), error="p2 lost its details"))
    return shards

  monkeypatch.setattr(store, "list_shards", list_shards_then_fail)

  refreshed = await machine.refresh("job_1")

  assert refreshed is not None and refreshed.status == "failed"
  stored = await store.get_job("job_1")
  assert stored is not None and stored.status == "failed"
  assert stored.error == "p2 lost its details"

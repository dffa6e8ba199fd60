"""Job lifecycle: `queued -> running -> {succeeded, failed}` with metric side effects."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import msgspec

from datagen.jobs.metrics import MetricsAggregator, MetricsDelta
from datagen.jobs.models import JobRecord, JobStatus, PeerShardState
from datagen.storage.interfaces import StorageError
from datagen.storage.job_store import JobStore
from datagen.utils.timeutil import Clock, elapsed_ms, to_iso, utc_now

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
  "queued": frozenset({"running", "failed"}),
  "running": frozenset({"succeeded", "failed"}),
  "succeeded": frozenset(),
  "failed": frozenset(),
}


class InvalidTransitionError(ValueError):
  def __init__(self, current: str, target: str) -> None:
    super().__init__(f"Cannot move job from {current} to {target}.")
    self.current = current
    self.target = target


def can_transition(current: JobStatus, target: JobStatus) -> bool:
  return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: JobStatus, target: JobStatus) -> None:
  if not can_transition(current, target):
    raise InvalidTransitionError(current, target)


def shards_complete(shards: Sequence[PeerShardState], peers: Sequence[str]) -> bool:
  """Return True when every assigned peer has an exhausted shard with an uploaded result."""
  by_peer = {shard.peer_id: shard for shard in shards}
  if not peers or any(peer_id not in by_peer for peer_id in peers):
    return False
  return all(by_peer[peer_id].is_complete for peer_id in peers)


def with_totals(job: JobRecord, shards: Sequence[PeerShardState]) -> JobRecord:
  """Recompute the job's aggregate counters from its shards."""
  total_ok = sum(shard.generated_ok for shard in shards)
  total_failed = sum(shard.generated_failed for shard in shards)
  return msgspec.structs.replace(
    job,
    total_ok=total_ok,
    total_failed=total_failed,
    total_generated=total_ok + total_failed,
    total_failed_attempts=sum(shard.failed_attempts for shard in shards),
  )


class JobStateMachine:
  """Apply status transitions to stored jobs.

  Every method reloads the job first and treats terminal jobs as read-only, so peers racing on the same
  job converge on the same stored outcome.
  """

  def __init__(self, *, job_store: JobStore, metrics: MetricsAggregator, clock: Clock = utc_now) -> None:
    self._jobs = job_store
    self._metrics = metrics
    self._clock = clock

  async def _save(self, job: JobRecord) -> None:
    await self._jobs.save_job(job)
    await self._jobs.index_job_for_owner(job)

  async def _bump(self, delta: MetricsDelta) -> None:
    try:
      await self._metrics.update(delta)
    except StorageError:
      logger.warning("Metrics update %s dropped", delta, exc_info=True)

  def _started(self, job: JobRecord, now: str) -> JobRecord:
    ensure_transition(job.status, "running")
    return msgspec.structs.replace(job, status="running", job_started_at=job.job_started_at or now, updated_at=now)

  async def start(self, job_id: str) -> JobRecord | None:
    """Move a queued job to running; no-op for running or terminal jobs."""
    job = await self._jobs.get_job(job_id)
    if job is None or job.status != "queued":
      return job
    now = to_iso(self._clock())
    job = self._started(job, now)
    await self._save(job)
    await self._bump(MetricsDelta(active_jobs=1, last_job_at=now))
    logger.info("Job %s running", job_id)
    return job

  async def fail(self, job_id: str, reason: str) -> JobRecord | None:
    """Drive a job to failed; no-op once terminal."""
    job = await self._jobs.get_job(job_id)
    if job is None or job.is_terminal:
      return job
    was_running = job.status == "running"
    ensure_transition(job.status, "failed")
    now = to_iso(self._clock())
    job = msgspec.structs.replace(job, status="failed", job_finished_at=now, updated_at=now, error=reason)
    await self._save(job)
    # Only a running job was counted as active.
    await self._bump(MetricsDelta(active_jobs=-1 if was_running else 0, failed_jobs=1))
    logger.error("Job %s failed: %s", job_id, reason)
    return job

  async def refresh(self, job_id: str) -> JobRecord | None:
    """Recompute totals from the shards and promote the job to succeeded once every shard is complete."""
    job = await self._jobs.get_job(job_id)
    if job is None or job.is_terminal:
      return job

    shards = await self._jobs.list_shards(job_id)
    # Another peer may have failed the job while the shards were read.
    current = await self._jobs.get_job(job_id)
    if current is None or current.is_terminal:
      return current
    now = to_iso(self._clock())
    job = msgspec.structs.replace(with_totals(job, shards), updated_at=now)

    if not shards_complete(shards, job.peers):
      await self._jobs.save_job(job)
      return job

    if job.status == "queued":
      job = self._started(job, now)
      await self._bump(MetricsDelta(active_jobs=1, last_job_at=now))

    ensure_transition(job.status, "succeeded")
    records_duration_ms = elapsed_ms(job.job_started_at, now) if job.job_started_at else None
    job = msgspec.structs.replace(job, status="succeeded", job_finished_at=now, records_duration_ms=records_duration_ms)
    await self._save(job)
    await self._bump(MetricsDelta(active_jobs=-1))
    logger.info("Job %s succeeded with %s ok and %s failed records", job_id, job.total_ok, job.total_failed)
    return job

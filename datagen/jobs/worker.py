"""Advance this peer's shard of a job, resuming from the local append log."""

from __future__ import annotations

import logging

import msgspec

from datagen.ai.errors import InferenceError
from datagen.ai.inference import InferenceClient, InferenceConfig
from datagen.config import Settings
from datagen.jobs.details import load_job_details
from datagen.jobs.local_log import LocalProgress, ShardLog
from datagen.jobs.metrics import MetricsAggregator, MetricsDelta
from datagen.jobs.models import JobDetails, JobRecord, PeerShardState, ShardLogEntry
from datagen.jobs.state_machine import JobStateMachine
from datagen.services.user_settings import UserSettingsService
from datagen.storage.interfaces import BlobStore, StorageError
from datagen.storage.job_store import JobStore
from datagen.utils.timeutil import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)


def _with_progress(shard: PeerShardState, progress: LocalProgress, now: str) -> PeerShardState:
  return msgspec.structs.replace(shard, generated_ok=progress.ok, generated_failed=progress.failed, failed_attempts=progress.failed_attempts, last_update_at=now)


class ShardWorker:
  """Generates the records of one (job, peer) shard sequentially."""

  def __init__(
    self,
    *,
    settings: Settings,
    job_store: JobStore,
    blobs: BlobStore,
    inference: InferenceClient,
    state_machine: JobStateMachine,
    metrics: MetricsAggregator,
    user_settings: UserSettingsService,
    clock: Clock = utc_now,
  ) -> None:
    self._settings = settings
    self._jobs = job_store
    self._blobs = blobs
    self._inference = inference
    self._state_machine = state_machine
    self._metrics = metrics
    self._user_settings = user_settings
    self._clock = clock

  def _now(self) -> str:
    return to_iso(self._clock())

  async def _inference_config(self, job: JobRecord, details: JobDetails) -> InferenceConfig:
    """Resolve the endpoint for a job; the gateway key comes from the owner's settings, never the details."""
    inference = details.inference
    api_key = None
    if inference.use_external_api:
      api_key = (await self._user_settings.read(job.owner)).api_key
    return InferenceConfig(
      base_url=inference.base_url if inference.use_external_api else None,
      api_key=api_key,
      model=inference.model,
      path=inference.path,
      parameters=dict(inference.parameters or {}),
    )

  async def run_job_for_peer(self, job_id: str, peer_id: str | None = None) -> PeerShardState | None:
    """Generate the remaining records of the peer's shard and finalize it.

    Per-record inference failures are logged into the shard and generation continues. Any other error
    (details missing, storage down) fails the whole job.
    """
    peer_id = peer_id or self._settings.peer_id
    job = await self._jobs.get_job(job_id)
    if job is None:
      return None
    shard = await self._jobs.get_shard(job_id, peer_id)
    if shard is None or job.is_terminal:
      return shard
    if shard.is_complete:
      # Finalized earlier; a crash may have skipped the job-level refresh.
      await self._state_machine.refresh(job_id)
      return shard

    try:
      return await self._advance(job, shard)
    except Exception as exc:  # noqa: BLE001
      logger.error("Shard %s/%s aborted; failing job", job_id, peer_id, exc_info=True)
      await self._abort(job_id, shard, exc)
      return await self._jobs.get_shard(job_id, peer_id)

  async def _advance(self, job: JobRecord, shard: PeerShardState) -> PeerShardState:
    log = ShardLog(self._settings.local_cache_dir, job.id, shard.peer_id, range_start=shard.range.start)
    log.ensure_dir()
    progress = log.read()

    # Local log wins over the remote counters, which may lag by up to K records.
    if progress.count > 0:
      logger.info("Resuming shard %s/%s at %s of %s", job.id, shard.peer_id, progress.count, shard.assigned)
      shard = _with_progress(shard, progress, self._now())
      await self._jobs.set_shard(job.id, shard)
    else:
      logger.info("Starting shard %s/%s range=[%s, %s)", job.id, shard.peer_id, shard.range.start, shard.range.end)

    details = await load_job_details(self._blobs, job)
    config = await self._inference_config(job, details)

    if not shard.started_at:
      shard = msgspec.structs.replace(shard, started_at=self._now())
      await self._jobs.set_shard(job.id, shard)
    await self._state_machine.start(job.id)

    update_every = self._settings.update_every_k
    since_checkpoint = 0
    for index in range(shard.range.start + progress.count, shard.range.end):
      try:
        result = await self._inference.generate_record(details.instructions, details.schema, dataset_mode=details.dataset_mode, config=config)
        entry = ShardLogEntry(i=index, ok=True, data=result.record, failed_attempts=result.failed_attempts)
      except InferenceError as exc:
        logger.warning("Record %s of job %s failed after %s attempts: %s", index, job.id, exc.failed_attempts, exc)
        entry = ShardLogEntry(i=index, ok=False, error=str(exc) or type(exc).__name__, failed_attempts=exc.failed_attempts)

      log.append(entry)
      progress.record(entry)
      if entry.ok:
        await self._bump_generated()

      since_checkpoint += 1
      if since_checkpoint >= update_every:
        since_checkpoint = 0
        shard = _with_progress(shard, progress, self._now())
        await self._jobs.set_shard(job.id, shard)
        refreshed = await self._state_machine.refresh(job.id)
        logger.info("Checkpoint %s/%s at %s of %s", job.id, shard.peer_id, progress.count, shard.assigned)
        if refreshed is not None and refreshed.status == "failed":
          logger.warning("Job %s failed elsewhere; stopping shard %s", job.id, shard.peer_id)
          return shard

    return await self._finalize(job, shard, log, progress)

  async def _finalize(self, job: JobRecord, shard: PeerShardState, log: ShardLog, progress: LocalProgress) -> PeerShardState:
    """Upload the results and errors once and record their CIDs on the shard."""
    result_cid = await self._blobs.upload(log.read_text(), f"{job.id}_{shard.peer_id}.jsonl")
    errors_cid = await self._blobs.upload(msgspec.json.encode(progress.errors).decode("utf-8"), f"{job.id}_{shard.peer_id}_errors.json")
    finished_at = self._now()
    shard = msgspec.structs.replace(_with_progress(shard, progress, finished_at), result_cid=result_cid, errors_cid=errors_cid, finished_at=finished_at)
    await self._jobs.set_shard(job.id, shard)
    log.save_state(
      {
        "generatedOk": progress.ok,
        "generatedFailed": progress.failed,
        "failedAttempts": progress.failed_attempts,
        "resultCid": result_cid,
        "errorsCid": errors_cid,
        "finishedAt": finished_at,
      }
    )
    logger.info("Finalized shard %s/%s result=%s errors=%s", job.id, shard.peer_id, result_cid, errors_cid)
    await self._state_machine.refresh(job.id)
    return shard

  async def _abort(self, job_id: str, shard: PeerShardState, exc: Exception) -> None:
    now = self._now()
    try:
      await self._jobs.set_shard(job_id, msgspec.structs.replace(shard, finished_at=now, last_update_at=now))
    except StorageError:
      logger.warning("Could not mark shard %s/%s finished", job_id, shard.peer_id, exc_info=True)
    await self._state_machine.fail(job_id, str(exc) or type(exc).__name__)

  async def _bump_generated(self) -> None:
    try:
      await self._metrics.update(MetricsDelta(total_records_generated=1))
    except StorageError:
      logger.warning("Metrics update dropped", exc_info=True)

"""Job surface: drafts, confirmation, the two-phase path, reads and exports."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import msgspec

from datagen.ai.errors import InferenceError
from datagen.ai.inference import InferenceClient, InferenceConfig
from datagen.config import Settings
from datagen.jobs.details import upload_job_details
from datagen.jobs.local_log import parse_results
from datagen.jobs.metrics import MetricsAggregator, MetricsDelta
from datagen.jobs.models import InferenceSettings, JobDetails, JobRecord, JobSummary, Metrics, PeerShardState
from datagen.jobs.splitter import split_range
from datagen.jobs.state_machine import JobStateMachine
from datagen.services.errors import InvalidSchemaError, JobNotCompleteError, JobNotFoundError, JobValidationError, SchemaGenerationError
from datagen.services.exporters import EXPORT_FORMATS, render_export
from datagen.services.schema_validation import sanitize_schema, validate_json_schema
from datagen.services.user_settings import UserSettingsService
from datagen.storage.interfaces import BlobStore, StorageError
from datagen.storage.job_store import JobStore
from datagen.utils.ids import generate_job_id
from datagen.utils.timeutil import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)

_TITLE_LIMIT = 80


class JobDraft(msgspec.Struct, kw_only=True, rename="camel"):
  """Schema proposal shown to the user before a job is confirmed."""

  owner: str
  title: str
  description: str
  instructions: str
  schema: dict[str, Any]
  total_records: int
  dataset_mode: bool
  schema_generated_at: str
  schema_duration_ms: int
  schema_refreshes: int = 0
  failed_attempts: int = 0


class JobView(msgspec.Struct, kw_only=True, rename="camel"):
  job: JobRecord
  shards: list[PeerShardState]
  progress: float


@dataclass
class ConfirmRequest:
  """Everything needed to register a job whose schema is already known."""

  owner: str
  title: str
  description: str
  instructions: str
  schema: Any
  total_records: int
  dataset_mode: bool = False
  peers: Sequence[str] | None = None
  inference: InferenceSettings = field(default_factory=InferenceSettings)
  schema_generated_at: str | None = None
  schema_duration_ms: int = 0
  schema_refreshes: int = 0


@dataclass
class GenerateRequest:
  """Two-phase request: the schema is generated unless one is supplied."""

  owner: str
  prompt: str
  total_records: int
  title: str | None = None
  instructions: str | None = None
  dataset_mode: bool = False
  schema: Any = None
  peers: Sequence[str] | None = None
  inference: InferenceSettings = field(default_factory=InferenceSettings)


def derive_title(prompt: str) -> str:
  """Use the first line of the prompt, shortened, as the job title."""
  first_line = prompt.strip().splitlines()[0] if prompt.strip() else "Untitled job"
  if len(first_line) <= _TITLE_LIMIT:
    return first_line
  return first_line[: _TITLE_LIMIT - 3].rstrip() + "..."


class JobService:
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

  def _validate_count(self, total_records: int) -> None:
    limit = self._settings.max_records_per_job
    if not 1 <= total_records <= limit:
      raise JobValidationError(f"Record count must be between 1 and {limit}.")

  def _resolve_peers(self, peers: Sequence[str] | None) -> list[str]:
    resolved = [peer.strip() for peer in (peers if peers is not None else self._settings.peers) if peer.strip()]
    if not resolved:
      raise JobValidationError("At least one peer is required.")
    if len(set(resolved)) != len(resolved):
      raise JobValidationError("Peer ids must be unique.")
    return resolved

  def _clean_schema(self, schema: Any) -> dict[str, Any]:
    return validate_json_schema(sanitize_schema(schema))

  async def _inference_config(self, owner: str, inference: InferenceSettings) -> InferenceConfig:
    if not inference.use_external_api:
      return InferenceConfig(model=inference.model, path=inference.path, parameters=dict(inference.parameters or {}))
    user = await self._user_settings.read(owner)
    return InferenceConfig(
      base_url=inference.base_url or user.base_url,
      api_key=user.api_key,
      model=inference.model or user.model,
      path=inference.path or user.path,
      parameters=dict(inference.parameters or {}),
    )

  # Draft phase

  async def create_draft(self, *, owner: str, prompt: str, total_records: int, dataset_mode: bool = False, inference: InferenceSettings | None = None, schema_refreshes: int = 0) -> JobDraft:
    """Generate and validate a schema for the prompt without creating any job state."""
    if not prompt.strip():
      raise JobValidationError("Prompt must not be empty.")
    self._validate_count(total_records)
    config = await self._inference_config(owner, inference or InferenceSettings())

    started = time.monotonic()
    try:
      result = await self._inference.generate_schema(prompt, dataset_mode=dataset_mode, config=config)
    except InferenceError as exc:
      logger.warning("Draft schema generation failed for %s after %s attempts: %s", owner, exc.failed_attempts, exc)
      raise SchemaGenerationError(f"Schema generation failed: {exc}") from exc
    duration_ms = int((time.monotonic() - started) * 1000)

    return JobDraft(
      owner=owner,
      title=derive_title(prompt),
      description=prompt.strip(),
      instructions=prompt.strip(),
      schema=self._clean_schema(result.schema),
      total_records=total_records,
      dataset_mode=dataset_mode,
      schema_generated_at=self._now(),
      schema_duration_ms=duration_ms,
      schema_refreshes=schema_refreshes,
      failed_attempts=result.failed_attempts,
    )

  async def refresh_draft(self, draft: JobDraft, *, inference: InferenceSettings | None = None) -> JobDraft:
    """Regenerate the schema of a draft and count the refresh."""
    return await self.create_draft(
      owner=draft.owner,
      prompt=draft.description,
      total_records=draft.total_records,
      dataset_mode=draft.dataset_mode,
      inference=inference,
      schema_refreshes=draft.schema_refreshes + 1,
    )

  # Job creation

  async def _open_job(self, *, owner: str, title: str, total_records: int, dataset_mode: bool, peers: list[str], schema_refreshes: int = 0) -> JobRecord:
    now = self._now()
    job = JobRecord(
      id=generate_job_id(),
      owner=owner,
      title=title,
      status="queued",
      total_records=total_records,
      dataset_mode=dataset_mode,
      peers=peers,
      peer_count=len(peers),
      created_at=now,
      updated_at=now,
      schema_refreshes=schema_refreshes,
    )
    await self._jobs.create_job(job)
    await self._metrics.update(MetricsDelta(total_jobs=1, total_records_requested=total_records, last_job_at=now))
    return job

  async def _register(self, job: JobRecord, details: JobDetails) -> JobRecord:
    """Upload details, then create one shard per peer and index the job for each peer.

    A store fault fails the job before it propagates; otherwise it stays queued with no shards.
    """
    try:
      return await self._write_shards(job, details)
    except StorageError as exc:
      logger.error("Registering job %s failed: %s", job.id, exc)
      await self._state_machine.fail(job.id, f"Job registration failed: {exc}")
      raise

  async def _write_shards(self, job: JobRecord, details: JobDetails) -> JobRecord:
    cid = await upload_job_details(self._blobs, details)
    job = msgspec.structs.replace(
      job,
      job_details_cid=cid,
      schema_generated_at=details.schema_generated_at,
      schema_duration_ms=details.schema_duration_ms,
      schema_refreshes=details.schema_refreshes,
      updated_at=self._now(),
    )
    await self._jobs.save_job(job)
    for peer_id, shard_range in split_range(job.total_records, job.peers).items():
      await self._jobs.set_shard(job.id, PeerShardState(peer_id=peer_id, assigned=shard_range.size, range=shard_range))
    # Peers only discover the job once every shard exists.
    for peer_id in job.peers:
      await self._jobs.index_job_for_peer(peer_id, job)
    logger.info("Job %s queued: %s records over %s", job.id, job.total_records, ",".join(job.peers))
    return job

  def _details(self, job: JobRecord, *, description: str, instructions: str, schema: dict[str, Any], inference: InferenceSettings, schema_generated_at: str | None, schema_duration_ms: int, schema_refreshes: int) -> JobDetails:
    # The gateway key stays in the owner's settings and is resolved at generation time.
    return JobDetails(
      id=job.id,
      owner=job.owner,
      description=description,
      instructions=instructions,
      schema=schema,
      inference=inference,
      dataset_mode=job.dataset_mode,
      created_at=job.created_at,
      schema_generated_at=schema_generated_at or job.created_at,
      schema_duration_ms=schema_duration_ms,
      schema_refreshes=schema_refreshes,
    )

  async def confirm_job(self, request: ConfirmRequest) -> JobRecord:
    """Validate a confirmed draft and register its job and shards."""
    self._validate_count(request.total_records)
    peers = self._resolve_peers(request.peers)
    schema = self._clean_schema(request.schema)
    if not request.instructions.strip():
      raise JobValidationError("Instructions must not be empty.")

    job = await self._open_job(
      owner=request.owner,
      title=request.title.strip() or derive_title(request.description),
      total_records=request.total_records,
      dataset_mode=request.dataset_mode,
      peers=peers,
      schema_refreshes=request.schema_refreshes,
    )
    details = self._details(
      job,
      description=request.description,
      instructions=request.instructions,
      schema=schema,
      inference=request.inference,
      schema_generated_at=request.schema_generated_at,
      schema_duration_ms=request.schema_duration_ms,
      schema_refreshes=request.schema_refreshes,
    )
    return await self._register(job, details)

  async def generate_job(self, request: GenerateRequest) -> JobRecord:
    """Create a job and run its schema phase; a failed schema phase leaves the job failed without shards."""
    if not request.prompt.strip():
      raise JobValidationError("Prompt must not be empty.")
    self._validate_count(request.total_records)
    peers = self._resolve_peers(request.peers)
    supplied_schema = self._clean_schema(request.schema) if request.schema is not None else None

    job = await self._open_job(
      owner=request.owner,
      title=(request.title or "").strip() or derive_title(request.prompt),
      total_records=request.total_records,
      dataset_mode=request.dataset_mode,
      peers=peers,
    )

    schema_generated_at = None
    duration_ms = 0
    schema = supplied_schema
    if schema is None:
      config = await self._inference_config(request.owner, request.inference)
      started = time.monotonic()
      try:
        result = await self._inference.generate_schema(request.prompt, dataset_mode=request.dataset_mode, config=config)
        schema = self._clean_schema(result.schema)
      except (InferenceError, InvalidSchemaError) as exc:
        failed = await self._state_machine.fail(job.id, f"Schema generation failed: {exc}")
        return failed or job
      duration_ms = int((time.monotonic() - started) * 1000)
      schema_generated_at = self._now()

    details = self._details(
      job,
      description=request.prompt.strip(),
      instructions=(request.instructions or request.prompt).strip(),
      schema=schema,
      inference=request.inference,
      schema_generated_at=schema_generated_at,
      schema_duration_ms=duration_ms,
      schema_refreshes=0,
    )
    return await self._register(job, details)

  # Reads

  async def get_job(self, job_id: str) -> JobView:
    job = await self._jobs.get_job(job_id)
    if job is None:
      raise JobNotFoundError(job_id)
    shards = await self._jobs.list_shards(job_id)
    processed = sum(min(shard.processed, shard.assigned) for shard in shards)
    progress = min(1.0, processed / job.total_records) if job.total_records else 0.0
    return JobView(job=job, shards=shards, progress=progress)

  async def list_jobs_for_peer(self, peer_id: str) -> list[JobRecord]:
    return await self._jobs.list_jobs_for_peer(peer_id)

  async def list_jobs_for_owner(self, owner: str) -> list[JobSummary]:
    return await self._jobs.list_jobs_for_owner(owner)

  async def read_metrics(self) -> Metrics:
    return await self._metrics.read()

  async def collect_results(self, job_id: str) -> list[Any]:
    """Return the successful records of a finished job ordered by record index."""
    job = await self._jobs.get_job(job_id)
    if job is None:
      raise JobNotFoundError(job_id)
    shards = await self._jobs.list_shards(job_id)
    finished = [shard for shard in shards if shard.result_cid]
    if job.status != "succeeded" and not (job.is_terminal and finished):
      raise JobNotCompleteError(f"Job {job_id} is {job.status}; results are not available yet.")

    entries = []
    for shard in finished:
      entries.extend(entry for entry in parse_results(await self._blobs.download(shard.result_cid)) if entry.ok)
    entries.sort(key=lambda entry: entry.i)
    return [entry.data for entry in entries]

  async def export_results(self, job_id: str, export_format: str = "json") -> list[Any] | str:
    """Return the job's records as a list (json) or as CSV text."""
    if export_format not in EXPORT_FORMATS:
      raise JobValidationError(f"Unknown export format {export_format!r}.")
    return render_export(await self.collect_results(job_id), export_format)

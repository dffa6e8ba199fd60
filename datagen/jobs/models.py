"""Persisted documents for sharded generation jobs, shards, tasks and metrics."""

from __future__ import annotations

from typing import Any, Literal, TypeVar

import msgspec

JobStatus = Literal["queued", "running", "succeeded", "failed"]
TaskStep = Literal["schema", "records", "completed"]
SchemaStatus = Literal["pending", "running", "succeeded", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})

T = TypeVar("T")


class ShardRange(msgspec.Struct, frozen=True):
  """Half-open record index range `[start, end)`."""

  start: int
  end: int

  @property
  def size(self) -> int:
    return self.end - self.start


class ShardError(msgspec.Struct):
  """One failed record index and the reason it failed."""

  index: int
  message: str


class PeerShardState(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
  """Progress of one peer's shard of a job."""

  peer_id: str
  assigned: int
  range: ShardRange
  generated_ok: int = 0
  generated_failed: int = 0
  failed_attempts: int = 0
  last_update_at: str | None = None
  started_at: str | None = None
  finished_at: str | None = None
  result_cid: str | None = None
  errors_cid: str | None = None

  @property
  def processed(self) -> int:
    return self.generated_ok + self.generated_failed

  @property
  def is_exhausted(self) -> bool:
    """Return True once every assigned index has an outcome."""
    return self.processed >= self.assigned

  @property
  def is_complete(self) -> bool:
    """Return True when the shard is exhausted and its results were uploaded."""
    return self.is_exhausted and bool(self.result_cid)


class JobRecord(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
  """Job metadata shared by every peer working on it."""

  id: str
  owner: str
  title: str
  status: JobStatus
  total_records: int
  peers: list[str]
  peer_count: int
  created_at: str
  updated_at: str
  dataset_mode: bool = False
  total_generated: int = 0
  total_ok: int = 0
  total_failed: int = 0
  total_failed_attempts: int = 0
  job_details_cid: str | None = None
  schema_generated_at: str | None = None
  job_started_at: str | None = None
  job_finished_at: str | None = None
  schema_duration_ms: int = 0
  records_duration_ms: int | None = None
  schema_refreshes: int = 0
  error: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


class InferenceSettings(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
  """Endpoint configuration captured in the job details at confirmation time."""

  use_external_api: bool = False
  base_url: str | None = None
  path: str | None = None
  model: str | None = None
  parameters: dict[str, Any] | None = None


class JobDetails(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
  """Heavy, write-once job payload stored as a blob and referenced by CID."""

  id: str
  owner: str
  description: str
  instructions: str
  schema: dict[str, Any]
  inference: InferenceSettings
  created_at: str
  dataset_mode: bool = False
  schema_generated_at: str | None = None
  schema_duration_ms: int = 0
  schema_refreshes: int = 0
  meta: dict[str, Any] | None = None


class JobSummary(msgspec.Struct, kw_only=True, rename="camel"):
  """Per-owner job index entry."""

  id: str
  title: str
  status: JobStatus
  created_at: str
  updated_at: str


class Metrics(msgspec.Struct, kw_only=True, rename="camel"):
  """Process-wide counters."""

  total_jobs: int = 0
  total_records_requested: int = 0
  total_records_generated: int = 0
  active_jobs: int = 0
  failed_jobs: int = 0
  last_job_at: str | None = None


class ShardLogEntry(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
  """One line of a peer's local append log: the outcome for a single record index."""

  i: int
  ok: bool
  data: Any = None
  error: str | None = None
  failed_attempts: int = 0


class TaskRecord(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
  """Single-process generation task: one shard covering the whole request."""

  id: str
  owner: str
  prompt: str
  count: int
  created_at: str
  status: JobStatus = "queued"
  step: TaskStep = "schema"
  schema_status: SchemaStatus = "pending"
  dataset_mode: bool = False
  use_custom_inference: bool = False
  inference_base_url: str | None = None
  inference_path: str | None = None
  inference_model: str | None = None
  started_at: str | None = None
  finished_at: str | None = None
  schema: Any = None
  schema_error: str | None = None
  completed: int = 0
  failures: int = 0
  results: list[Any] = msgspec.field(default_factory=list)
  errors: list[ShardError] = msgspec.field(default_factory=list)


class UserInferenceSettings(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
  """Per-owner inference defaults for external gateways."""

  base_url: str | None = None
  api_key: str | None = None
  model: str | None = None
  path: str | None = None


def encode_document(document: msgspec.Struct) -> str:
  """Encode a document as compact JSON text for the state store."""
  return msgspec.json.encode(document).decode("utf-8")


def decode_document(raw: str | bytes, document_type: type[T]) -> T:
  """Decode JSON text from the state store into a typed document."""
  return msgspec.json.decode(raw, type=document_type)

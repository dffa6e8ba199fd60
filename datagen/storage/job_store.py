"""Typed job and shard persistence over the shared state store."""

from __future__ import annotations

import logging
from typing import TypeVar

import msgspec

from datagen.jobs.models import JobRecord, JobSummary, PeerShardState, decode_document, encode_document
from datagen.storage import keys
from datagen.storage.interfaces import StateStore, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _decode(raw: str, document_type: type[T], label: str) -> T:
  try:
    return decode_document(raw, document_type)
  except (msgspec.DecodeError, msgspec.ValidationError) as exc:
    raise StorageError(f"Stored {label} is corrupt: {exc}") from exc


class JobStore:
  """Job metadata, per-peer shard states and the peer/owner indexes."""

  def __init__(self, state: StateStore) -> None:
    self._state = state

  async def save_job(self, job: JobRecord) -> None:
    await self._state.hset(keys.JOBS_HASH, job.id, encode_document(job))

  async def create_job(self, job: JobRecord) -> None:
    """Persist a new job and list it for its owner."""
    await self.save_job(job)
    await self.index_job_for_owner(job)

  async def get_job(self, job_id: str) -> JobRecord | None:
    raw = await self._state.hget(keys.JOBS_HASH, job_id)
    if raw is None:
      return None
    return _decode(raw, JobRecord, f"job {job_id}")

  async def set_shard(self, job_id: str, shard: PeerShardState) -> None:
    await self._state.hset(keys.job_peers_key(job_id), shard.peer_id, encode_document(shard))

  async def get_shard(self, job_id: str, peer_id: str) -> PeerShardState | None:
    raw = await self._state.hget(keys.job_peers_key(job_id), peer_id)
    if raw is None:
      return None
    return _decode(raw, PeerShardState, f"shard {job_id}/{peer_id}")

  async def list_shards(self, job_id: str) -> list[PeerShardState]:
    """Return every shard of a job, ordered by range start."""
    shards: list[PeerShardState] = []
    for peer_id in await self._state.hkeys(keys.job_peers_key(job_id)):
      shard = await self.get_shard(job_id, peer_id)
      if shard is not None:
        shards.append(shard)
    shards.sort(key=lambda shard: shard.range.start)
    return shards

  async def index_job_for_peer(self, peer_id: str, job: JobRecord) -> None:
    await self._state.hset(keys.peer_jobs_key(peer_id), job.id, job.created_at)

  async def list_jobs_for_peer(self, peer_id: str) -> list[JobRecord]:
    """Return non-terminal jobs with an incomplete shard for the peer, oldest first."""
    jobs: list[JobRecord] = []
    for job_id in await self._state.hkeys(keys.peer_jobs_key(peer_id)):
      job = await self.get_job(job_id)
      if job is None:
        logger.warning("Peer %s index references missing job %s", peer_id, job_id)
        continue
      if job.is_terminal:
        continue
      shard = await self.get_shard(job_id, peer_id)
      if shard is None or shard.is_complete:
        continue
      jobs.append(job)
    jobs.sort(key=lambda job: (job.created_at, job.id))
    return jobs

  async def index_job_for_owner(self, job: JobRecord) -> None:
    summary = JobSummary(id=job.id, title=job.title, status=job.status, created_at=job.created_at, updated_at=job.updated_at)
    await self._state.hset(keys.user_jobs_key(job.owner), job.id, encode_document(summary))

  async def list_jobs_for_owner(self, owner: str) -> list[JobSummary]:
    """Return the owner's job summaries, newest first."""
    summaries: list[JobSummary] = []
    hash_key = keys.user_jobs_key(owner)
    for job_id in await self._state.hkeys(hash_key):
      raw = await self._state.hget(hash_key, job_id)
      if raw is not None:
        summaries.append(_decode(raw, JobSummary, f"job summary {job_id}"))
    summaries.sort(key=lambda summary: summary.created_at, reverse=True)
    return summaries

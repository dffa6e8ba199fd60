"""Unit tests for typed job, shard and index persistence."""

from __future__ import annotations

import pytest

from datagen.jobs.models import JobRecord, PeerShardState, ShardRange
from datagen.storage import keys
from datagen.storage.interfaces import StorageError
from datagen.storage.job_store import JobStore
from datagen.storage.memory import MemoryStateStore


def _job(job_id: str, created_at: str, owner: str = "alice") -> JobRecord:
  return JobRecord(id=job_id, owner=owner, title=job_id, status="queued", total_records=3, peers=["p1", "p2"], peer_count=2, created_at=created_at, updated_at=created_at)


@pytest.mark.anyio
async def test_documents_are_stored_as_camel_case_json() -> None:
  state = MemoryStateStore()
  store = JobStore(state)
  await store.create_job(_job("job_1", "2026-01-01T00:00:00.000Z"))
  await store.set_shard("job_1", PeerShardState(peer_id="p1", assigned=2, range=ShardRange(0, 2)))

  raw_job = await state.hget(keys.JOBS_HASH, "job_1")
  raw_shard = await state.hget(keys.job_peers_key("job_1"), "p1")
  assert raw_job is not None and '"totalRecords":3' in raw_job
  assert raw_shard is not None and '"peerId":"p1"' in raw_shard
  assert (await store.get_job("job_1")) == _job("job_1", "2026-01-01T00:00:00.000Z")


@pytest.mark.anyio
async def test_shards_are_listed_by_range_start() -> None:
  store = JobStore(MemoryStateStore())
  await store.set_shard("job_1", PeerShardState(peer_id="p2", assigned=1, range=ShardRange(2, 3)))
  await store.set_shard("job_1", PeerShardState(peer_id="p1", assigned=2, range=ShardRange(0, 2)))
  assert [shard.peer_id for shard in await store.list_shards("job_1")] == ["p1", "p2"]


@pytest.mark.anyio
async def test_peer_listing_skips_missing_and_finished_work() -> None:
  store = JobStore(MemoryStateStore())
  for job_id, created_at in (("job_b", "2026-01-02T00:00:00.000Z"), ("job_a", "2026-01-01T00:00:00.000Z"), ("job_c", "2026-01-03T00:00:00.000Z")):
    job = _job(job_id, created_at)
    await store.create_job(job)
    await store.index_job_for_peer("p1", job)
  await store.set_shard("job_a", PeerShardState(peer_id="p1", assigned=2, range=ShardRange(0, 2)))
  await store.set_shard("job_b", PeerShardState(peer_id="p1", assigned=2, range=ShardRange(0, 2), generated_ok=2, result_cid="cid"))
  # job_c has no shard for p1 at all.

  jobs = await store.list_jobs_for_peer("p1")

  assert [job.id for job in jobs] == ["job_a"]
  assert await store.list_jobs_for_peer("nobody") == []


@pytest.mark.anyio
async def test_owner_listing_is_newest_first() -> None:
  store = JobStore(MemoryStateStore())
  await store.create_job(_job("job_old", "2026-01-01T00:00:00.000Z"))
  await store.create_job(_job("job_new", "2026-02-01T00:00:00.000Z"))
  await store.create_job(_job("job_other", "2026-03-01T00:00:00.000Z", owner="bob"))

  summaries = await store.list_jobs_for_owner("alice")

  assert [summary.id for summary in summaries] == ["job_new", "job_old"]


@pytest.mark.anyio
async def test_corrupt_document_raises_storage_error() -> None:
  state = MemoryStateStore()
  await state.hset(keys.JOBS_HASH, "job_1", '{"id": "job_1"')
  with pytest.raises(StorageError, match="job job_1"):
    await JobStore(state).get_job("job_1")

"""Partition a job's record range across peers."""

from __future__ import annotations

from collections.abc import Sequence

from datagen.jobs.models import ShardRange


def split_range(total_records: int, peers: Sequence[str]) -> dict[str, ShardRange]:
  """Split `[0, total_records)` into contiguous ranges in peer order.

  Sizes differ by at most one and the remainder goes to the earliest peers, so the same inputs always
  reproduce the same shard boundaries. Callers validate `total_records >= 1` and a non-empty peer list.
  """
  base, remainder = divmod(total_records, len(peers))
  ranges: dict[str, ShardRange] = {}
  start = 0
  for position, peer_id in enumerate(peers):
    size = base + (1 if position < remainder else 0)
    ranges[peer_id] = ShardRange(start=start, end=start + size)
    start += size
  return ranges

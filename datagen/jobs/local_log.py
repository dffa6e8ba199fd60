"""Per-(job, peer) append log of record outcomes on local disk.

The log is the source of truth for how far a shard got. Each line is one record index, written in order
and flushed before the worker moves on, so a restart resumes right after the last complete line.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import msgspec

from datagen.jobs.models import ShardError, ShardLogEntry

logger = logging.getLogger(__name__)

RESULTS_FILENAME = "results.jsonl"
STATE_FILENAME = "state.json"


@dataclass
class LocalProgress:
  """Counts recovered from the valid prefix of the log."""

  count: int = 0
  ok: int = 0
  failed: int = 0
  failed_attempts: int = 0
  errors: list[ShardError] = field(default_factory=list)

  def record(self, entry: ShardLogEntry) -> None:
    self.count += 1
    self.failed_attempts += entry.failed_attempts
    if entry.ok:
      self.ok += 1
    else:
      self.failed += 1
      self.errors.append(ShardError(index=entry.i, message=entry.error or "error"))


class ShardLog:
  """Append log owned by exactly one peer's worker."""

  def __init__(self, cache_dir: str | Path, job_id: str, peer_id: str, *, range_start: int) -> None:
    self.directory = Path(cache_dir) / job_id / peer_id
    self.results_path = self.directory / RESULTS_FILENAME
    self.state_path = self.directory / STATE_FILENAME
    self.range_start = range_start

  def ensure_dir(self) -> None:
    self.directory.mkdir(parents=True, exist_ok=True)

  def read(self) -> LocalProgress:
    """Return progress from the valid prefix, truncating anything after it.

    A line is valid when it is newline-terminated, decodes as an entry and carries the next expected index.
    Anything after the first invalid line is a torn write from a crash and is discarded.
    """
    progress = LocalProgress()
    if not self.results_path.exists():
      return progress

    data = self.results_path.read_bytes()
    offset = 0
    while True:
      newline = data.find(b"\n", offset)
      if newline == -1:
        break
      line = data[offset:newline]
      if line.strip():
        try:
          entry = msgspec.json.decode(line, type=ShardLogEntry)
        except (msgspec.DecodeError, msgspec.ValidationError):
          break
        if entry.i != self.range_start + progress.count:
          break
        progress.record(entry)
      offset = newline + 1

    if offset < len(data):
      logger.warning("Truncating %s bytes of unreadable log tail in %s", len(data) - offset, self.results_path)
      with self.results_path.open("r+b") as handle:
        handle.truncate(offset)
    return progress

  def append(self, entry: ShardLogEntry) -> None:
    """Durably append one outcome."""
    with self.results_path.open("ab") as handle:
      handle.write(msgspec.json.encode(entry) + b"\n")
      handle.flush()
      os.fsync(handle.fileno())

  def read_text(self) -> str:
    if not self.results_path.exists():
      return ""
    return self.results_path.read_text(encoding="utf-8")

  def save_state(self, state: dict[str, Any]) -> None:
    self.state_path.write_text(json.dumps(state, indent=2), encoding="utf-8")


def parse_results(content: str) -> list[ShardLogEntry]:
  """Decode an uploaded results blob, skipping blank lines."""
  return [msgspec.json.decode(line, type=ShardLogEntry) for line in content.splitlines() if line.strip()]

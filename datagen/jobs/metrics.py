"""Best-effort global counters kept as one document in the state store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import msgspec

from datagen.jobs.models import Metrics, decode_document, encode_document
from datagen.storage import keys
from datagen.storage.interfaces import StateStore

logger = logging.getLogger(__name__)

_COUNTERS = ("total_jobs", "total_records_requested", "total_records_generated", "active_jobs", "failed_jobs")


@dataclass(frozen=True)
class MetricsDelta:
  """Signed counter changes; `last_job_at` is only replaced when given (None clears it)."""

  total_jobs: int = 0
  total_records_requested: int = 0
  total_records_generated: int = 0
  active_jobs: int = 0
  failed_jobs: int = 0
  last_job_at: Any = msgspec.UNSET


def apply_delta(current: Metrics, delta: MetricsDelta) -> Metrics:
  """Return a new snapshot with every counter shifted by the delta and clamped at zero."""
  changes: dict[str, Any] = {name: max(0, getattr(current, name) + getattr(delta, name)) for name in _COUNTERS}
  if delta.last_job_at is not msgspec.UNSET:
    changes["last_job_at"] = delta.last_job_at
  return msgspec.structs.replace(current, **changes)


class MetricsAggregator:
  """Read-modify-write over the metrics document.

  Concurrent writers can lose updates; the counters are an observability signal only.
  """

  def __init__(self, state: StateStore) -> None:
    self._state = state

  async def read(self) -> Metrics:
    """Return the stored snapshot, initializing zeros when it is missing or unreadable."""
    raw = await self._state.get(keys.METRICS_KEY)
    if raw is not None:
      try:
        return decode_document(raw, Metrics)
      except (msgspec.DecodeError, msgspec.ValidationError):
        logger.warning("Stored metrics are unreadable; resetting to zeros")
    metrics = Metrics()
    await self._state.set(keys.METRICS_KEY, encode_document(metrics))
    return metrics

  async def update(self, delta: MetricsDelta) -> Metrics:
    current = await self.read()
    updated = apply_delta(current, delta)
    await self._state.set(keys.METRICS_KEY, encode_document(updated))
    return updated

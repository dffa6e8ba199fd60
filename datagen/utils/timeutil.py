"""Timestamp helpers shared by the job engine."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
  return datetime.now(UTC)


def to_iso(moment: datetime) -> str:
  """Format a timestamp as an ISO-8601 UTC string with millisecond precision."""
  return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(raw: str) -> datetime:
  """Parse timestamps written by `to_iso` (or any ISO-8601 string)."""
  return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def elapsed_ms(started_at: str, finished_at: str) -> int:
  return int((parse_iso(finished_at) - parse_iso(started_at)).total_seconds() * 1000)

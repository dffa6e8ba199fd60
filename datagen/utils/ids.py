"""Identifier utilities."""

from __future__ import annotations

import secrets
import time


def generate_job_id() -> str:
  """Return a new job identifier ordered by creation time."""
  return f"job_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def generate_task_id() -> str:
  """Return a new single-process task identifier."""
  return f"task_{int(time.time() * 1000)}_{secrets.token_hex(3)}"

"""Key layout of the shared state store."""

from __future__ import annotations

PREFIX = "datagen"
METRICS_KEY = f"{PREFIX}:metrics"
JOBS_HASH = f"{PREFIX}:jobs"


def job_peers_key(job_id: str) -> str:
  """Hash of peer id -> shard state for one job."""
  return f"{PREFIX}:job:{job_id}:peers"


def peer_jobs_key(peer_id: str) -> str:
  """Hash of job id -> job creation time for the jobs a peer works on."""
  return f"{PREFIX}:peer:{peer_id}:jobs"


def user_jobs_key(owner: str) -> str:
  return f"{PREFIX}:user:{owner}:jobs"


def user_tasks_key(owner: str) -> str:
  return f"{PREFIX}:user:{owner}:tasks"


def user_settings_key(owner: str) -> str:
  return f"{PREFIX}:user:{owner}:settings"

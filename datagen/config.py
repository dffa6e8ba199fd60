"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache

from datagen.utils.env import default_env_path, env_host_port_url, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_INFERENCE_PATH = "/create_chat_completion"
DEFAULT_CACHE_DIR = "/_local_cache/datagen"
_STORE_BACKENDS = {"memory", "http", "postgres"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the DataGen service and its worker."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  inference_base_url: str | None
  inference_path: str
  inference_timeout_seconds: float | None
  mock_inference: bool
  mock_inference_seed: int | None
  retry_inference_on_failure: bool
  log_inference_requests: bool
  max_records_per_job: int
  peer_id: str
  peers: tuple[str, ...]
  job_poll_seconds: float
  max_concurrent_jobs: int
  update_every_k: int
  worker_enabled: bool
  local_cache_dir: str
  store_backend: str
  cstore_url: str | None
  r1fs_url: str | None
  pg_dsn: str | None

  @property
  def inference_attempts(self) -> int:
    """Return the attempt cap for one generation call."""
    return 2 if self.retry_inference_on_failure else 1


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  origins = [origin.strip() for origin in (raw or "http://localhost:3000").split(",") if origin.strip()]

  if not origins:
    raise ValueError("DATAGEN_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("DATAGEN_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_peers(raw: str | None, peer_id: str | None) -> tuple[str, tuple[str, ...]]:
  """Resolve the local peer id and the ordered peer list."""
  peers: list[str] = []
  value = _optional_str(raw)
  if value is not None:
    # Accept either a JSON array or a comma separated list.
    if value.startswith("["):
      try:
        decoded = json.loads(value)
      except json.JSONDecodeError as exc:
        raise ValueError("DATAGEN_PEERS must be a JSON array or a comma separated list.") from exc
      if not isinstance(decoded, list):
        raise ValueError("DATAGEN_PEERS must be a JSON array or a comma separated list.")
      peers = [str(item).strip() for item in decoded if str(item).strip()]
    else:
      peers = [item.strip() for item in value.split(",") if item.strip()]

  # A lone worker with no peer configuration shards every job onto itself.
  if not peers:
    peers = [peer_id or "local"]

  if len(set(peers)) != len(peers):
    raise ValueError("DATAGEN_PEERS must not contain duplicate peer ids.")

  local_peer = peer_id or peers[0]
  if local_peer not in peers:
    raise ValueError(f"DATAGEN_PEER_ID '{local_peer}' is not part of DATAGEN_PEERS.")

  return local_peer, tuple(peers)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("DATAGEN_ENV", "development").lower()
  debug = _parse_bool(os.getenv("DATAGEN_DEBUG"))

  log_max_bytes = _positive_int("DATAGEN_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("DATAGEN_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("DATAGEN_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Host/port pairs win over a full base URL, matching how sidecar endpoints are usually injected.
  inference_base_url = env_host_port_url("DATAGEN_INFERENCE_HOST", "DATAGEN_INFERENCE_PORT") or _optional_str(os.getenv("DATAGEN_INFERENCE_BASE_URL"))
  raw_timeout = _optional_str(os.getenv("DATAGEN_INFERENCE_TIMEOUT_SECONDS"))
  inference_timeout_seconds = float(raw_timeout) if raw_timeout is not None else None
  if inference_timeout_seconds is not None and inference_timeout_seconds <= 0:
    raise ValueError("DATAGEN_INFERENCE_TIMEOUT_SECONDS must be positive when provided.")

  raw_seed = _optional_str(os.getenv("DATAGEN_MOCK_INFERENCE_SEED"))

  peer_id, peers = _parse_peers(os.getenv("DATAGEN_PEERS"), _optional_str(os.getenv("DATAGEN_PEER_ID")))
  job_poll_seconds = float(os.getenv("DATAGEN_JOB_POLL_SECONDS", "5"))
  if job_poll_seconds <= 0:
    raise ValueError("DATAGEN_JOB_POLL_SECONDS must be positive.")

  store_backend = (os.getenv("DATAGEN_STORE_BACKEND") or "memory").strip().lower()
  if store_backend not in _STORE_BACKENDS:
    raise ValueError(f"DATAGEN_STORE_BACKEND must be one of {sorted(_STORE_BACKENDS)}.")

  cstore_url = env_host_port_url("EE_CHAINSTORE_API_HOST", "EE_CHAINSTORE_API_PORT") or _optional_str(os.getenv("DATAGEN_CSTORE_URL"))
  r1fs_url = env_host_port_url("EE_R1FS_API_HOST", "EE_R1FS_API_PORT") or _optional_str(os.getenv("DATAGEN_R1FS_URL"))
  pg_dsn = _optional_str(os.getenv("DATAGEN_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))

  # Validate backend connectivity settings only for the selected backend.
  if store_backend == "http" and (cstore_url is None or r1fs_url is None):
    raise ValueError("DATAGEN_CSTORE_URL and DATAGEN_R1FS_URL must be set for the http store backend.")

  if store_backend == "postgres" and pg_dsn is None:
    raise ValueError("DATAGEN_PG_DSN must be set for the postgres store backend.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("DATAGEN_ALLOWED_ORIGINS")),
    log_dir=(os.getenv("DATAGEN_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    inference_base_url=inference_base_url,
    inference_path=_optional_str(os.getenv("DATAGEN_INFERENCE_PATH")) or DEFAULT_INFERENCE_PATH,
    inference_timeout_seconds=inference_timeout_seconds,
    mock_inference=_parse_bool(os.getenv("DATAGEN_MOCK_INFERENCE_API")),
    mock_inference_seed=int(raw_seed) if raw_seed is not None else None,
    retry_inference_on_failure=_parse_bool(os.getenv("DATAGEN_RETRY_INFERENCE_ON_FAILURE")),
    log_inference_requests=_parse_bool(os.getenv("DATAGEN_LOG_INFERENCE_REQUESTS")),
    max_records_per_job=_positive_int("DATAGEN_MAX_RECORDS_PER_JOB", "200"),
    peer_id=peer_id,
    peers=peers,
    job_poll_seconds=job_poll_seconds,
    max_concurrent_jobs=_positive_int("DATAGEN_MAX_CONCURRENT_JOBS", "1"),
    update_every_k=_positive_int("DATAGEN_UPDATE_EVERY_K", "5"),
    worker_enabled=not _parse_bool(os.getenv("DATAGEN_DISABLE_WORKER")),
    local_cache_dir=_optional_str(os.getenv("DATAGEN_LOCAL_CACHE_DIR")) or DEFAULT_CACHE_DIR,
    store_backend=store_backend,
    cstore_url=cstore_url,
    r1fs_url=r1fs_url,
    pg_dsn=pg_dsn,
  )

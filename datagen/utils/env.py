"""Lightweight .env loader and environment helpers for local configuration."""

from __future__ import annotations

import os
import re
from pathlib import Path

_PROTOCOL_RE = re.compile(r"^[a-z]+://", re.IGNORECASE)
_PORT_SUFFIX_RE = re.compile(r":[0-9]+$")


def default_env_path() -> Path:
  """Return the default .env path at the repo root."""

  return Path(__file__).resolve().parents[2] / ".env"


def _unquote(value: str) -> str:
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
    return value[1:-1]
  return value


def load_env_file(path: Path, *, override: bool = False) -> None:
  """Copy KEY=VALUE lines of a .env file into os.environ; existing variables win unless override is set."""

  if not path.is_file():
    return

  for raw_line in path.read_text(encoding="utf-8").splitlines():
    line = raw_line.strip().removeprefix("export ").strip()
    if not line or line.startswith("#"):
      continue
    key, separator, value = line.partition("=")
    key = key.strip()
    if not separator or not key:
      continue
    if override or key not in os.environ:
      os.environ[key] = _unquote(value.strip())


def env_host_port_url(host_key: str, port_key: str | None = None, *, protocol: str = "http") -> str | None:
  """Build a base URL from a host variable and an optional port variable."""
  host = (os.getenv(host_key) or "").strip()
  if not host:
    return None

  # Drop trailing slashes and default the protocol when the host is bare.
  normalized_host = host.rstrip("/")
  base = normalized_host if _PROTOCOL_RE.match(normalized_host) else f"{protocol}://{normalized_host}"
  if port_key is None:
    return base

  port = (os.getenv(port_key) or "").strip()
  if not port:
    return base

  # Respect an explicit port already embedded in the host value.
  if _PORT_SUFFIX_RE.search(_PROTOCOL_RE.sub("", normalized_host)):
    return base

  return f"{base}:{port}"

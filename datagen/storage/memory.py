"""In-process stores for single-node deployments and tests."""

from __future__ import annotations

import hashlib

from datagen.storage.interfaces import StorageError


def content_id(content: str) -> str:
  """Return the sha256 content identifier of a blob."""
  return hashlib.sha256(content.encode("utf-8")).hexdigest()


class MemoryStateStore:
  def __init__(self) -> None:
    self._values: dict[str, str] = {}
    self._hashes: dict[str, dict[str, str]] = {}

  async def get(self, key: str) -> str | None:
    return self._values.get(key)

  async def set(self, key: str, value: str) -> None:
    self._values[key] = value

  async def hget(self, hash_key: str, field: str) -> str | None:
    return self._hashes.get(hash_key, {}).get(field)

  async def hset(self, hash_key: str, field: str, value: str) -> None:
    self._hashes.setdefault(hash_key, {})[field] = value

  async def hkeys(self, hash_key: str) -> list[str]:
    return list(self._hashes.get(hash_key, {}))


class MemoryBlobStore:
  """Blob store keyed by content hash; identical content shares a CID."""

  def __init__(self) -> None:
    self._blobs: dict[str, str] = {}
    self.names: dict[str, str] = {}

  async def upload(self, content: str, name: str) -> str:
    cid = content_id(content)
    self._blobs[cid] = content
    self.names.setdefault(cid, name)
    return cid

  async def download(self, cid: str) -> str:
    try:
      return self._blobs[cid]
    except KeyError as exc:
      raise StorageError(f"Blob {cid} not found.") from exc

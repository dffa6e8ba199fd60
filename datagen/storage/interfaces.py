"""Contracts for the shared state store and the content-addressed blob store."""

from __future__ import annotations

from typing import Protocol


class StorageError(RuntimeError):
  """Backend could not complete a read or write."""


class StateStore(Protocol):
  """Scalar and hash key/value store shared by every peer."""

  async def get(self, key: str) -> str | None:
    """Return the scalar value stored at key."""

  async def set(self, key: str, value: str) -> None:
    """Overwrite the scalar value stored at key."""

  async def hget(self, hash_key: str, field: str) -> str | None:
    """Return one field of a hash."""

  async def hset(self, hash_key: str, field: str, value: str) -> None:
    """Overwrite one field of a hash."""

  async def hkeys(self, hash_key: str) -> list[str]:
    """Return the field names of a hash in insertion order."""


class BlobStore(Protocol):
  """Immutable, content-identified blob storage."""

  async def upload(self, content: str, name: str) -> str:
    """Store content and return its content identifier."""

  async def download(self, cid: str) -> str:
    """Return the content stored under cid; raise StorageError when it is unknown."""

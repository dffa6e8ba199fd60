"""Select the storage backend configured for this process."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from datagen.config import Settings
from datagen.storage.http_store import HttpBlobStore, HttpStateStore
from datagen.storage.interfaces import BlobStore, StateStore
from datagen.storage.memory import MemoryBlobStore, MemoryStateStore
from datagen.storage.sql_store import SqlBlobStore, SqlStateStore, create_store_engine, create_tables

logger = logging.getLogger(__name__)


@dataclass
class Stores:
  """State and blob stores plus the hooks that release their connections."""

  state: StateStore
  blobs: BlobStore
  closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

  async def aclose(self) -> None:
    for closer in self.closers:
      await closer()


async def build_stores(settings: Settings) -> Stores:
  """Build the configured backend, creating SQL tables on first use."""
  backend = settings.store_backend
  if backend == "http":
    assert settings.cstore_url is not None and settings.r1fs_url is not None
    state = HttpStateStore(settings.cstore_url)
    blobs = HttpBlobStore(settings.r1fs_url)
    logger.info("Using HTTP stores cstore=%s r1fs=%s", settings.cstore_url, settings.r1fs_url)
    return Stores(state=state, blobs=blobs, closers=[state.aclose, blobs.aclose])

  if backend == "postgres":
    assert settings.pg_dsn is not None
    engine = create_store_engine(settings.pg_dsn, echo=settings.debug)
    await create_tables(engine)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
    logger.info("Using SQL stores")
    return Stores(state=SqlStateStore(session_factory), blobs=SqlBlobStore(session_factory), closers=[engine.dispose])

  logger.info("Using in-memory stores; state is lost on restart")
  return Stores(state=MemoryStateStore(), blobs=MemoryBlobStore())

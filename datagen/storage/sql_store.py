"""SQLAlchemy asyncio backend for the state and blob stores."""

from __future__ import annotations

from sqlalchemy import Integer, String, Text, UniqueConstraint, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from datagen.storage.interfaces import StorageError
from datagen.storage.memory import content_id


class Base(DeclarativeBase):
  pass


class KeyValue(Base):
  __tablename__ = "datagen_kv"

  key: Mapped[str] = mapped_column(String, primary_key=True)
  value: Mapped[str] = mapped_column(Text, nullable=False)


class HashField(Base):
  __tablename__ = "datagen_hash"
  __table_args__ = (UniqueConstraint("hash_key", "field", name="ux_datagen_hash_key_field"),)

  # Autoincrement id keeps hkeys in insertion order.
  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  hash_key: Mapped[str] = mapped_column(String, nullable=False, index=True)
  field: Mapped[str] = mapped_column(String, nullable=False)
  value: Mapped[str] = mapped_column(Text, nullable=False)


class Blob(Base):
  __tablename__ = "datagen_blobs"

  cid: Mapped[str] = mapped_column(String, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)


def database_url(dsn: str) -> str:
  """Route plain postgres DSNs through the asyncpg driver."""
  if dsn.startswith("postgresql://"):
    return dsn.replace("postgresql://", "postgresql+asyncpg://", 1)
  if dsn.startswith("postgres://"):
    return dsn.replace("postgres://", "postgresql+asyncpg://", 1)
  return dsn


def create_store_engine(dsn: str, *, echo: bool = False) -> AsyncEngine:
  return create_async_engine(database_url(dsn), echo=echo, future=True)


async def create_tables(engine: AsyncEngine) -> None:
  """Create the store tables when they do not exist yet."""
  async with engine.begin() as connection:
    await connection.run_sync(Base.metadata.create_all)


class _SqlStore:
  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory


class SqlStateStore(_SqlStore):
  async def get(self, key: str) -> str | None:
    try:
      async with self._session_factory() as session:
        row = await session.get(KeyValue, key)
        return row.value if row is not None else None
    except SQLAlchemyError as exc:
      raise StorageError(f"get {key} failed: {exc}") from exc

  async def set(self, key: str, value: str) -> None:
    try:
      async with self._session_factory() as session:
        row = await session.get(KeyValue, key)
        if row is None:
          session.add(KeyValue(key=key, value=value))
        else:
          row.value = value
        await session.commit()
    except SQLAlchemyError as exc:
      raise StorageError(f"set {key} failed: {exc}") from exc

  async def hget(self, hash_key: str, field: str) -> str | None:
    try:
      async with self._session_factory() as session:
        result = await session.execute(select(HashField.value).where(HashField.hash_key == hash_key, HashField.field == field))
        return result.scalar_one_or_none()
    except SQLAlchemyError as exc:
      raise StorageError(f"hget {hash_key}.{field} failed: {exc}") from exc

  async def hset(self, hash_key: str, field: str, value: str) -> None:
    try:
      async with self._session_factory() as session:
        result = await session.execute(select(HashField).where(HashField.hash_key == hash_key, HashField.field == field))
        row = result.scalar_one_or_none()
        if row is None:
          session.add(HashField(hash_key=hash_key, field=field, value=value))
        else:
          row.value = value
        await session.commit()
    except SQLAlchemyError as exc:
      raise StorageError(f"hset {hash_key}.{field} failed: {exc}") from exc

  async def hkeys(self, hash_key: str) -> list[str]:
    try:
      async with self._session_factory() as session:
        result = await session.execute(select(HashField.field).where(HashField.hash_key == hash_key).order_by(HashField.id))
        return list(result.scalars().all())
    except SQLAlchemyError as exc:
      raise StorageError(f"hkeys {hash_key} failed: {exc}") from exc


class SqlBlobStore(_SqlStore):
  async def upload(self, content: str, name: str) -> str:
    cid = content_id(content)
    try:
      async with self._session_factory() as session:
        # Identical content already stored under the same CID stays untouched.
        if await session.get(Blob, cid) is None:
          session.add(Blob(cid=cid, name=name, content=content))
          await session.commit()
    except SQLAlchemyError as exc:
      raise StorageError(f"upload {name} failed: {exc}") from exc
    return cid

  async def download(self, cid: str) -> str:
    try:
      async with self._session_factory() as session:
        row = await session.get(Blob, cid)
    except SQLAlchemyError as exc:
      raise StorageError(f"download {cid} failed: {exc}") from exc
    if row is None:
      raise StorageError(f"Blob {cid} not found.")
    return row.content

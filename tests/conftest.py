"""Shared fixtures: settings built in code, in-memory stores and a scripted generation endpoint."""

from __future__ import annotations

import random
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import replace
from pathlib import Path
from typing import Any

import httpx
import pytest

from datagen.config import Settings
from datagen.main import create_app
from datagen.services.runtime import Runtime, assemble_runtime
from datagen.storage.factory import Stores
from datagen.storage.memory import MemoryBlobStore, MemoryStateStore
from tests.fakes import INFERENCE_URL, FakeInferenceEndpoint


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
  base = Settings(
    environment="test",
    debug=False,
    allowed_origins=("http://localhost:3000",),
    log_dir=str(tmp_path / "logs"),
    log_max_bytes=1024 * 1024,
    log_backup_count=1,
    inference_base_url=INFERENCE_URL,
    inference_path="/create_chat_completion",
    inference_timeout_seconds=None,
    mock_inference=False,
    mock_inference_seed=None,
    retry_inference_on_failure=False,
    log_inference_requests=False,
    max_records_per_job=200,
    peer_id="p1",
    peers=("p1",),
    job_poll_seconds=5.0,
    max_concurrent_jobs=1,
    update_every_k=5,
    worker_enabled=False,
    local_cache_dir=str(tmp_path / "cache"),
    store_backend="memory",
    cstore_url=None,
    r1fs_url=None,
    pg_dsn=None,
  )

  def build(**overrides: Any) -> Settings:
    return replace(base, **overrides)

  return build


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
  return settings_factory()


@pytest.fixture
def endpoint() -> FakeInferenceEndpoint:
  return FakeInferenceEndpoint()


@pytest.fixture
def stores() -> Stores:
  return Stores(state=MemoryStateStore(), blobs=MemoryBlobStore())


@pytest.fixture
async def runtime_factory(settings_factory: Callable[..., Settings], stores: Stores, endpoint: FakeInferenceEndpoint) -> AsyncIterator[Callable[..., Awaitable[Runtime]]]:
  """Build runtimes that share one set of stores, as peers of one deployment do."""
  clients: list[httpx.AsyncClient] = []
  runtimes: list[Runtime] = []

  async def build(**overrides: Any) -> Runtime:
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler))
    clients.append(client)
    runtime = assemble_runtime(settings_factory(**overrides), stores, http_client=client, rng=random.Random(7))
    runtimes.append(runtime)
    return runtime

  yield build

  for runtime in runtimes:
    await runtime.scheduler.stop(wait=True)
  for client in clients:
    await client.aclose()


@pytest.fixture
async def runtime(runtime_factory: Callable[..., Awaitable[Runtime]]) -> Runtime:
  return await runtime_factory(peers=("p1", "p2", "p3"))


@pytest.fixture
async def api_client(runtime: Runtime) -> AsyncIterator[httpx.AsyncClient]:
  """HTTP client for an app serving the shared test runtime."""
  app = create_app(runtime.settings)
  app.state.runtime = runtime
  async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
    yield client

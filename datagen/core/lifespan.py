import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from datagen.core.logging import initialize_logging
from datagen.services.runtime import Runtime, build_runtime


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, open the stores and run this peer's job worker for the life of the app."""
  from datagen.config import get_settings

  logger = logging.getLogger("datagen.core.lifespan")

  # A runtime placed on the app beforehand (tests) is used as is and left open.
  runtime: Runtime | None = getattr(app.state, "runtime", None)
  owns_runtime = runtime is None
  settings = runtime.settings if runtime is not None else get_settings()

  try:
    initialize_logging(settings)
  except Exception:  # noqa: BLE001
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  if runtime is None:
    logger.info("Opening %s stores (dsn=%s)", settings.store_backend, _redact_dsn(settings.pg_dsn))
    runtime = await build_runtime(settings)
    app.state.runtime = runtime

  if settings.worker_enabled:
    runtime.scheduler.start()
  else:
    logger.info("Job worker disabled for peer %s", settings.peer_id)
  logger.info("Startup complete for peer %s of %s", settings.peer_id, ",".join(settings.peers))

  try:
    yield
  finally:
    # Cancels the timer only; the local log lets an interrupted shard resume on restart.
    await runtime.scheduler.stop()
    if owns_runtime:
      await runtime.aclose()
      del app.state.runtime
    logger.info("Shutdown complete for peer %s", settings.peer_id)


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"

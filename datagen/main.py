from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from datagen import __version__
from datagen.api.routes import jobs, metrics, tasks, users
from datagen.config import Settings, get_settings
from datagen.core.exceptions import datagen_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler, storage_exception_handler
from datagen.core.lifespan import lifespan
from datagen.core.middleware import RequestLoggingMiddleware
from datagen.services.errors import DataGenError
from datagen.storage.interfaces import StorageError


def create_app(settings: Settings | None = None) -> FastAPI:
  """Build the HTTP app; the runtime is opened by the lifespan unless already set on app.state."""
  settings = settings or get_settings()
  app = FastAPI(title="DataGen", version=__version__, lifespan=lifespan)

  app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "PUT", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "content-disposition"])

  # Add exception handlers
  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
  app.add_exception_handler(DataGenError, datagen_exception_handler)
  app.add_exception_handler(StorageError, storage_exception_handler)

  app.add_middleware(RequestLoggingMiddleware)

  @app.get("/health", include_in_schema=False)
  async def health_check() -> dict[str, str]:
    """Return a simple health status."""
    return {"status": "ok", "version": __version__}

  app.include_router(jobs.router, prefix="/v1", tags=["jobs"])
  app.include_router(tasks.router, prefix="/v1/tasks", tags=["tasks"])
  app.include_router(metrics.router, prefix="/v1/metrics", tags=["metrics"])
  app.include_router(users.router, prefix="/v1/users", tags=["users"])
  return app


app = create_app()

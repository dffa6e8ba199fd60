import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from datagen.services.errors import DataGenError, InvalidSchemaError
from datagen.storage.interfaces import StorageError

logger = logging.getLogger("datagen.core.exceptions")

_INTERNAL_ERROR = "Internal Server Error"


def _coerce_json_safe(value: Any) -> Any:
  """Turn values pydantic leaves in error contexts (exceptions, tuples, sets) into JSON primitives."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return f"{type(value).__name__}: {value}" if str(value) else type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None, **extra: Any) -> dict[str, Any]:
  payload: dict[str, Any] = {"detail": detail, **extra}
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Drop echoed request input from validation errors; record bodies can be large."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    entry = {key: value for key, value in error.items() if key != "input"}
    context = entry.get("ctx")
    if isinstance(context, dict):
      entry["ctx"] = {key: value for key, value in context.items() if key != "input"}
    sanitized.append(_coerce_json_safe(entry))
  return sanitized


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _respond(request: Request, status_code: int, detail: Any, *, headers: dict[str, str] | None = None, **extra: Any) -> JSONResponse:
  return JSONResponse(status_code=status_code, content=_error_payload(detail, request_id=_request_id(request), **extra), headers=headers)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Last resort: log with traceback, answer 500 without internals."""
  logger.error("Unhandled %s on %s %s request_id=%s", type(exc).__name__, request.method, request.url.path, _request_id(request), exc_info=exc)
  return _respond(request, status.HTTP_500_INTERNAL_SERVER_ERROR, _INTERNAL_ERROR)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Invalid request body on %s %s request_id=%s errors=%s", request.method, request.url.path, _request_id(request), errors)
  return _respond(request, status.HTTP_422_UNPROCESSABLE_ENTITY, errors)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  if exc.status_code >= 500:
    logger.error("HTTP %s on %s request_id=%s detail=%s", exc.status_code, request.url.path, _request_id(request), exc.detail)
    return _respond(request, exc.status_code, _INTERNAL_ERROR)
  return _respond(request, exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


async def datagen_exception_handler(request: Request, exc: DataGenError) -> JSONResponse:
  """Job, task and schema errors carry their own status code and a client-safe message."""
  level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
  logger.log(level, "%s on %s request_id=%s: %s", type(exc).__name__, request.url.path, _request_id(request), exc.message)
  if isinstance(exc, InvalidSchemaError):
    return _respond(request, exc.status_code, exc.message, problems=exc.problems)
  return _respond(request, exc.status_code, exc.message)


async def storage_exception_handler(request: Request, exc: StorageError) -> JSONResponse:
  logger.error("Store unavailable on %s request_id=%s", request.url.path, _request_id(request), exc_info=exc)
  return _respond(request, status.HTTP_503_SERVICE_UNAVAILABLE, "Storage unavailable")

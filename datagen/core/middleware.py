import logging
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("datagen.core.middleware")

REQUEST_ID_HEADER = "x-request-id"
_QUIET_PATHS = frozenset({"/health"})
_MAX_CLIENT_ID_LENGTH = 128


def _request_target(scope: Scope) -> str:
  path = scope.get("path", "")
  query = scope.get("query_string", b"")
  return f"{path}?{query.decode('latin-1')}" if query else path


def _resolve_request_id(scope: Scope) -> str:
  """Reuse a caller supplied id when it is sane, so traces line up across peers."""
  supplied = Headers(scope=scope).get(REQUEST_ID_HEADER, "").strip()
  if supplied and len(supplied) <= _MAX_CLIENT_ID_LENGTH and supplied.isprintable():
    return supplied
  return uuid.uuid4().hex


class RequestLoggingMiddleware:
  """Tag every HTTP request with an id and log one line per request and response."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = _resolve_request_id(scope)
    # Exception handlers read it back through request.state.
    scope.setdefault("state", {})["request_id"] = request_id

    level = logging.DEBUG if scope.get("path") in _QUIET_PATHS else logging.INFO
    method = scope.get("method", "-")
    target = _request_target(scope)
    logger.log(level, "-> %s %s request_id=%s", method, target, request_id)

    started = time.perf_counter()
    response_status: dict[str, Any] = {"code": 0}

    async def send_with_id(message: Message) -> None:
      if message["type"] == "http.response.start":
        response_status["code"] = message.get("status", 0)
        MutableHeaders(scope=message).setdefault(REQUEST_ID_HEADER, request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_with_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.log(level, "<- %s %s status=%s %.1fms request_id=%s", method, target, response_status["code"], elapsed_ms, request_id)

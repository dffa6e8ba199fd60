"""Response helpers for msgspec documents."""

from __future__ import annotations

from typing import Any

import msgspec
from starlette.responses import Response


def encode_msgspec_response(payload: Any, *, status_code: int = 200) -> Response:
  """Encode a msgspec.Struct value (or a list/dict of them) as a JSON HTTP response."""
  encoded = msgspec.json.encode(payload)
  return Response(content=encoded, status_code=status_code, media_type="application/json")

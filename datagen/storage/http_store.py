"""HTTP adapters for chain-store style key/hash APIs and a base64 blob API."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

import httpx

from datagen.storage.interfaces import StorageError

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str | None:
  """Stores may hand back decoded JSON; normalize everything to the string we wrote."""
  if value is None:
    return None
  if isinstance(value, str):
    return value
  return json.dumps(value)


class _HttpApi:
  """Shared request plumbing: every response wraps its payload under `result`."""

  def __init__(self, base_url: str, *, client: httpx.AsyncClient | None = None) -> None:
    self._base_url = base_url.rstrip("/")
    self._client = client or httpx.AsyncClient(trust_env=False, timeout=30.0)

  async def aclose(self) -> None:
    await self._client.aclose()

  async def _request(self, method: str, path: str, *, params: dict[str, str] | None = None, payload: dict[str, Any] | None = None) -> Any:
    url = f"{self._base_url}{path}"
    try:
      response = await self._client.request(method, url, params=params, json=payload)
      response.raise_for_status()
      data = response.json()
    except httpx.HTTPStatusError as exc:
      logger.error("Storage call %s %s returned %s", method, path, exc.response.status_code)
      raise StorageError(f"{method} {path} failed with status {exc.response.status_code}") from exc
    except httpx.RequestError as exc:
      logger.error("Storage call %s %s failed: %s", method, path, exc)
      raise StorageError(f"{method} {path} failed: {exc}") from exc
    except ValueError as exc:
      raise StorageError(f"{method} {path} returned a non-JSON body") from exc

    if not isinstance(data, dict) or "result" not in data:
      raise StorageError(f"{method} {path} returned an unexpected payload")
    return data["result"]


class HttpStateStore(_HttpApi):
  async def get(self, key: str) -> str | None:
    return _as_text(await self._request("GET", "/get_value", params={"key": key}))

  async def set(self, key: str, value: str) -> None:
    await self._request("POST", "/set_value", payload={"key": key, "value": value})

  async def hget(self, hash_key: str, field: str) -> str | None:
    return _as_text(await self._request("GET", "/hget", params={"hkey": hash_key, "key": field}))

  async def hset(self, hash_key: str, field: str, value: str) -> None:
    await self._request("POST", "/hset", payload={"hkey": hash_key, "key": field, "value": value})

  async def hkeys(self, hash_key: str) -> list[str]:
    result = await self._request("GET", "/hgetall", params={"hkey": hash_key})
    if result is None:
      return []
    if not isinstance(result, dict):
      raise StorageError(f"/hgetall returned {type(result).__name__} for {hash_key}")
    return list(result)


class HttpBlobStore(_HttpApi):
  async def upload(self, content: str, name: str) -> str:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    result = await self._request("POST", "/add_file_base64", payload={"file_base64_str": encoded, "filename": name})
    cid = result.get("cid") if isinstance(result, dict) else result
    if not isinstance(cid, str) or not cid:
      raise StorageError(f"Upload of {name} returned no content identifier")
    return cid

  async def download(self, cid: str) -> str:
    result = await self._request("GET", "/get_file_base64", params={"cid": cid})
    encoded = result.get("file_base64_str") if isinstance(result, dict) else result
    if not isinstance(encoded, str):
      raise StorageError(f"Blob {cid} not found.")
    try:
      return base64.b64decode(encoded).decode("utf-8")
    except ValueError as exc:
      raise StorageError(f"Blob {cid} is not valid base64 text") from exc

"""Client for the chat-completion generation endpoint with bounded retries."""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from datagen.ai.envelope import EnvelopeError, unwrap_envelope
from datagen.ai.errors import InferenceConfigError, InferenceError, InferenceHTTPError, InferenceParseError, InferenceResultError
from datagen.ai.prompts import (
  DATASET_RECORD_SYSTEM_PROMPT,
  DATASET_SCHEMA_SYSTEM_PROMPT,
  JSON_SCHEMA_META_SCHEMA,
  RECORD_SCHEMA_INSTRUCTION,
  RECORD_SYSTEM_PROMPT,
  SCHEMA_SYSTEM_PROMPT,
  SCHEMA_USER_SUFFIX,
)
from datagen.ai.synthetic import coerce_record, random_record, random_schema, record_from_schema
from datagen.config import Settings

logger = logging.getLogger(__name__)

CallLabel = Literal["schema", "record"]


@dataclass(frozen=True)
class InferenceConfig:
  """Per-call endpoint overrides; unset fields fall back to the configured defaults."""

  base_url: str | None = None
  api_key: str | None = None
  model: str | None = None
  path: str | None = None
  parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SchemaResult:
  schema: Any
  failed_attempts: int


@dataclass(frozen=True)
class RecordResult:
  record: Any
  failed_attempts: int


def _redact_headers(headers: dict[str, str]) -> dict[str, str]:
  return {key: ("[redacted]" if key.lower() == "authorization" else value) for key, value in headers.items()}


class InferenceClient:
  """Generate schemas and records, recovering JSON from whatever text the model returns."""

  def __init__(self, *, settings: Settings, http_client: httpx.AsyncClient | None = None, rng: random.Random | None = None) -> None:
    self._settings = settings
    self._http_client = http_client
    self._owns_client = http_client is None
    self._rng = rng or random.Random(settings.mock_inference_seed)

  @property
  def attempts(self) -> int:
    return self._settings.inference_attempts

  def _client(self) -> httpx.AsyncClient:
    if self._http_client is None:
      # A slow generation simply delays the next poll; only an explicit setting bounds it.
      self._http_client = httpx.AsyncClient(timeout=self._settings.inference_timeout_seconds, trust_env=False)
    return self._http_client

  async def aclose(self) -> None:
    if self._owns_client and self._http_client is not None:
      await self._http_client.aclose()
      self._http_client = None

  async def list_models(self, base_url: str, api_key: str | None = None) -> list[Any]:
    """GET `{base_url}/models` from an OpenAI-style gateway; accepts `{"data": [...]}` or a bare list."""
    url = f"{base_url.rstrip('/')}/models"
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    try:
      response = await self._client().get(url, headers=headers)
    except httpx.HTTPError as exc:
      raise InferenceHTTPError(f"Model list request failed: {exc}") from exc
    if not response.is_success:
      raise InferenceHTTPError(f"Model list failed with status {response.status_code}", status_code=response.status_code)
    try:
      data = response.json()
    except ValueError as exc:
      raise InferenceParseError("Model list response is not JSON") from exc

    if isinstance(data, dict) and isinstance(data.get("data"), list) and data["data"]:
      return data["data"]
    if isinstance(data, list):
      return data
    return []

  def build_url(self, config: InferenceConfig) -> str | None:
    """Join the base URL and path, or return None when no endpoint is configured."""
    base = config.base_url or self._settings.inference_base_url
    if not base:
      return None
    path = (config.path or "").strip() or self._settings.inference_path
    if not path.startswith("/"):
      path = f"/{path}"
    return f"{base.rstrip('/')}{path}"

  async def generate_schema(self, prompt: str, *, dataset_mode: bool = False, config: InferenceConfig | None = None) -> SchemaResult:
    """Ask the model for a JSON Schema describing one record."""
    if self._settings.mock_inference:
      return SchemaResult(schema=random_schema(self._rng), failed_attempts=0)

    config = config or InferenceConfig()
    messages = [
      {"role": "system", "content": DATASET_SCHEMA_SYSTEM_PROMPT if dataset_mode else SCHEMA_SYSTEM_PROMPT},
      {"role": "user", "content": prompt + "\n" + SCHEMA_USER_SUFFIX},
    ]
    # Callers may tune sampling, but the response format is always the meta-schema.
    parameters = {"temperature": 0.2, "max_tokens": 1200, **config.parameters, "response_format": {"type": "json_object", "schema": JSON_SCHEMA_META_SCHEMA}}
    output, failed_attempts = await self._call(messages, "schema", config, parameters)
    return SchemaResult(schema=output, failed_attempts=failed_attempts)

  async def generate_record(self, prompt: str, schema: Any = None, *, dataset_mode: bool = False, config: InferenceConfig | None = None) -> RecordResult:
    """Ask the model for one record, backfilling fields it left out."""
    if self._settings.mock_inference:
      record = record_from_schema(schema, self._rng) or random_record(self._rng)
      return RecordResult(record=record, failed_attempts=0)

    config = config or InferenceConfig()
    messages = [
      {"role": "system", "content": DATASET_RECORD_SYSTEM_PROMPT if dataset_mode else RECORD_SYSTEM_PROMPT},
      {"role": "user", "content": prompt},
    ]
    response_format: dict[str, Any] = {"type": "json_object"}
    if isinstance(schema, dict):
      response_format = {"type": "json_object", "schema": schema}
      messages.append({"role": "user", "content": RECORD_SCHEMA_INSTRUCTION + "\n" + json.dumps(schema)})

    parameters = {**config.parameters, "response_format": response_format}
    output, failed_attempts = await self._call(messages, "record", config, parameters)
    return RecordResult(record=coerce_record(output, schema, self._rng), failed_attempts=failed_attempts)

  async def _call(self, messages: list[dict[str, str]], label: CallLabel, config: InferenceConfig, parameters: dict[str, Any]) -> tuple[Any, int]:
    """POST the request up to the attempt cap; return the parsed output and the failed attempt count."""
    url = self.build_url(config)
    if url is None:
      raise InferenceConfigError(f"No inference endpoint configured for {label} generation.", failed_attempts=1)

    headers = {"Content-Type": "application/json"}
    if config.api_key:
      headers["Authorization"] = f"Bearer {config.api_key}"

    body: dict[str, Any] = {"messages": messages}
    if config.model:
      body["model"] = config.model
    body.update(parameters)

    max_attempts = self.attempts
    failed_attempts = 0
    last_error: InferenceError | None = None

    for attempt in range(1, max_attempts + 1):
      if self._settings.log_inference_requests:
        logger.info("%s inference request (attempt %s/%s) url=%s headers=%s body=%s", label, attempt, max_attempts, url, _redact_headers(headers), json.dumps(body))

      try:
        response = await self._client().post(url, json=body, headers=headers)
        if not response.is_success:
          raise InferenceHTTPError(f"Inference call failed with status {response.status_code}", status_code=response.status_code)
        data = response.json()
        if self._settings.log_inference_requests:
          logger.info("%s inference response (attempt %s/%s) status=%s raw=%s", label, attempt, max_attempts, response.status_code, json.dumps(data))
        return unwrap_envelope(data), failed_attempts

      except InferenceHTTPError as exc:
        last_error = exc
      except httpx.HTTPError as exc:
        last_error = InferenceHTTPError(f"Inference request failed: {exc}")
      except EnvelopeError as exc:
        last_error = InferenceResultError(str(exc))
      except ValueError as exc:
        last_error = InferenceParseError(str(exc) or "Failed to parse inference response as JSON")

      failed_attempts += 1
      logger.warning("%s inference attempt %s/%s failed: %s", label, attempt, max_attempts, last_error)

    if last_error is None:
      raise InferenceConfigError(f"No attempts allowed for {label} generation.")
    last_error.failed_attempts = failed_attempts
    raise last_error

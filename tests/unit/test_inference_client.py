"""Unit tests for generation calls, retries and failed-attempt accounting."""

from __future__ import annotations

import random
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from datagen.ai.errors import InferenceConfigError, InferenceHTTPError, InferenceParseError, InferenceResultError
from datagen.ai.inference import InferenceClient, InferenceConfig
from datagen.config import Settings

from tests.fakes import PRODUCT_SCHEMA, FakeInferenceEndpoint


@pytest.fixture
async def make_client(endpoint: FakeInferenceEndpoint) -> AsyncIterator[Callable[[Settings], InferenceClient]]:
  clients: list[httpx.AsyncClient] = []

  def build(settings: Settings) -> InferenceClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler))
    clients.append(http_client)
    return InferenceClient(settings=settings, http_client=http_client, rng=random.Random(3))

  yield build
  for http_client in clients:
    await http_client.aclose()


@pytest.mark.anyio
async def test_first_attempt_success_has_no_failed_attempts(make_client, settings, endpoint) -> None:
  endpoint.reply({"name": "Lamp", "price": 12.5, "inStock": False})
  result = await make_client(settings).generate_record("lamps", PRODUCT_SCHEMA)
  assert result.record == {"name": "Lamp", "price": 12.5, "inStock": False}
  assert result.failed_attempts == 0
  assert endpoint.requests[0]["response_format"] == {"type": "json_object", "schema": PRODUCT_SCHEMA}


@pytest.mark.anyio
async def test_retry_recovers_after_one_failed_attempt(make_client, settings_factory, endpoint) -> None:
  endpoint.fail(502)
  endpoint.reply({"name": "Desk", "price": 80})
  client = make_client(settings_factory(retry_inference_on_failure=True))

  result = await client.generate_record("desks", PRODUCT_SCHEMA)

  assert result.failed_attempts == 1
  assert result.record["name"] == "Desk"
  assert len(endpoint.requests) == 2


@pytest.mark.anyio
async def test_without_retry_a_single_failure_is_final(make_client, settings, endpoint) -> None:
  endpoint.fail(500)
  with pytest.raises(InferenceHTTPError) as excinfo:
    await make_client(settings).generate_record("desks", PRODUCT_SCHEMA)
  assert excinfo.value.failed_attempts == 1
  assert excinfo.value.status_code == 500
  assert len(endpoint.requests) == 1


@pytest.mark.anyio
async def test_exhausted_retries_report_every_attempt(make_client, settings_factory, endpoint) -> None:
  endpoint.raise_error(httpx.ConnectError("connection refused"))
  endpoint.reply("no json here at all")
  client = make_client(settings_factory(retry_inference_on_failure=True))

  with pytest.raises(InferenceParseError) as excinfo:
    await client.generate_record("chairs", PRODUCT_SCHEMA)
  assert excinfo.value.failed_attempts == 2


@pytest.mark.anyio
async def test_envelope_error_is_a_result_error(make_client, settings, endpoint) -> None:
  endpoint.scripted.append(httpx.Response(200, json={"result": {"error": "quota exceeded"}}))
  with pytest.raises(InferenceResultError, match="quota exceeded"):
    await make_client(settings).generate_schema("anything")


@pytest.mark.anyio
async def test_missing_endpoint_counts_one_failed_attempt(make_client, settings_factory, endpoint) -> None:
  client = make_client(settings_factory(inference_base_url=None))
  with pytest.raises(InferenceConfigError) as excinfo:
    await client.generate_schema("anything")
  assert excinfo.value.failed_attempts == 1
  assert endpoint.requests == []


@pytest.mark.anyio
async def test_schema_request_shape(make_client, settings, endpoint) -> None:
  result = await make_client(settings).generate_schema("bike shop tickets", config=InferenceConfig(model="small-model", parameters={"temperature": 0.7}))

  body = endpoint.requests[0]
  assert result.schema == PRODUCT_SCHEMA
  assert body["model"] == "small-model"
  assert body["temperature"] == 0.7
  assert body["max_tokens"] == 1200
  assert body["response_format"]["type"] == "json_object"
  assert body["messages"][1]["content"].startswith("bike shop tickets")


@pytest.mark.anyio
async def test_external_gateway_gets_bearer_token(make_client, settings, endpoint) -> None:
  config = InferenceConfig(base_url="http://gateway.test/", path="v1/chat", api_key="secret-key")
  endpoint.reply(PRODUCT_SCHEMA)
  client = make_client(settings)

  await client.generate_schema("x", config=config)

  assert client.build_url(config) == "http://gateway.test/v1/chat"
  assert endpoint.headers[0]["authorization"] == "Bearer secret-key"


@pytest.mark.anyio
async def test_record_backfills_fields_the_model_left_out(make_client, settings, endpoint) -> None:
  endpoint.reply({"name": "Only a name"})
  result = await make_client(settings).generate_record("x", PRODUCT_SCHEMA)
  assert result.record["name"] == "Only a name"
  assert isinstance(result.record["price"], float | int)
  assert isinstance(result.record["inStock"], bool)


@pytest.mark.anyio
async def test_offline_mode_is_deterministic_for_a_seed(settings_factory, endpoint) -> None:
  settings = settings_factory(mock_inference=True, mock_inference_seed=42, inference_base_url=None)
  first = await InferenceClient(settings=settings).generate_schema("x")
  second = await InferenceClient(settings=settings).generate_schema("x")

  assert first.schema == second.schema
  assert first.schema["type"] == "object"
  record = await InferenceClient(settings=settings).generate_record("x", first.schema)
  assert set(record.record) == set(first.schema["properties"])
  assert endpoint.requests == []

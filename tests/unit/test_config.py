"""Unit tests for environment-driven settings."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from datagen.config import DEFAULT_INFERENCE_PATH, get_settings
from datagen.utils.env import load_env_file


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
  for name in list(os.environ):
    if name.startswith("DATAGEN_") or name.startswith("EE_") or name == "DATABASE_URL":
      monkeypatch.delenv(name, raising=False)
  get_settings.cache_clear()
  yield monkeypatch
  get_settings.cache_clear()


def test_defaults() -> None:
  settings = get_settings()
  assert settings.peer_id == "local"
  assert settings.peers == ("local",)
  assert settings.inference_path == DEFAULT_INFERENCE_PATH
  assert settings.inference_timeout_seconds is None
  assert settings.inference_attempts == 1
  assert settings.update_every_k == 5
  assert settings.max_records_per_job == 200
  assert settings.store_backend == "memory"
  assert settings.worker_enabled is True


def test_peer_list_from_json_or_commas(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.setenv("DATAGEN_PEERS", '["p1", "p2", "p3"]')
  clean_env.setenv("DATAGEN_PEER_ID", "p2")
  settings = get_settings()
  assert settings.peers == ("p1", "p2", "p3")
  assert settings.peer_id == "p2"

  get_settings.cache_clear()
  clean_env.setenv("DATAGEN_PEERS", "a, b")
  clean_env.delenv("DATAGEN_PEER_ID")
  settings = get_settings()
  assert settings.peers == ("a", "b")
  assert settings.peer_id == "a"


@pytest.mark.parametrize(
  ("variables", "message"),
  [
    ({"DATAGEN_PEERS": "p1,p2", "DATAGEN_PEER_ID": "p9"}, "not part of DATAGEN_PEERS"),
    ({"DATAGEN_PEERS": "p1,p1"}, "duplicate"),
    ({"DATAGEN_PEERS": "[broken"}, "JSON array"),
    ({"DATAGEN_UPDATE_EVERY_K": "0"}, "DATAGEN_UPDATE_EVERY_K"),
    ({"DATAGEN_ALLOWED_ORIGINS": "*"}, "wildcard"),
    ({"DATAGEN_STORE_BACKEND": "redis"}, "DATAGEN_STORE_BACKEND"),
    ({"DATAGEN_STORE_BACKEND": "http"}, "DATAGEN_CSTORE_URL"),
    ({"DATAGEN_STORE_BACKEND": "postgres"}, "DATAGEN_PG_DSN"),
    ({"DATAGEN_INFERENCE_TIMEOUT_SECONDS": "-1"}, "TIMEOUT"),
  ],
)
def test_invalid_values_fail_at_load(clean_env: pytest.MonkeyPatch, variables: dict[str, str], message: str) -> None:
  for name, value in variables.items():
    clean_env.setenv(name, value)
  with pytest.raises(ValueError, match=message):
    get_settings()


def test_host_and_port_build_endpoint_urls(clean_env: pytest.MonkeyPatch) -> None:
  clean_env.setenv("DATAGEN_INFERENCE_HOST", "llm-sidecar")
  clean_env.setenv("DATAGEN_INFERENCE_PORT", "8080")
  clean_env.setenv("DATAGEN_INFERENCE_BASE_URL", "http://ignored")
  clean_env.setenv("DATAGEN_STORE_BACKEND", "http")
  clean_env.setenv("EE_CHAINSTORE_API_HOST", "https://cstore:31234")
  clean_env.setenv("EE_CHAINSTORE_API_PORT", "9999")
  clean_env.setenv("DATAGEN_R1FS_URL", "http://r1fs:8000")
  clean_env.setenv("DATAGEN_RETRY_INFERENCE_ON_FAILURE", "yes")

  settings = get_settings()

  assert settings.inference_base_url == "http://llm-sidecar:8080"
  assert settings.cstore_url == "https://cstore:31234"
  assert settings.r1fs_url == "http://r1fs:8000"
  assert settings.inference_attempts == 2


def test_env_file_does_not_override_existing_variables(clean_env: pytest.MonkeyPatch, tmp_path) -> None:
  env_file = tmp_path / ".env"
  env_file.write_text('# local overrides\nexport DATAGEN_PEER_ID="p2"\nDATAGEN_PEERS=p1,p2\nDATAGEN_ENV=staging\nnot a pair\n', encoding="utf-8")
  clean_env.setenv("DATAGEN_ENV", "production")

  try:
    load_env_file(env_file)

    assert os.environ["DATAGEN_PEER_ID"] == "p2"
    assert os.environ["DATAGEN_ENV"] == "production"
    settings = get_settings()
    assert (settings.peer_id, settings.peers) == ("p2", ("p1", "p2"))
  finally:
    os.environ.pop("DATAGEN_PEER_ID", None)
    os.environ.pop("DATAGEN_PEERS", None)

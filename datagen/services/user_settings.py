"""Per-owner inference defaults for external gateways."""

from __future__ import annotations

import logging
from typing import Any

import msgspec

from datagen.ai.errors import InferenceError
from datagen.ai.inference import InferenceClient
from datagen.jobs.models import UserInferenceSettings, decode_document, encode_document
from datagen.services.errors import GatewayConfigError, ModelListError
from datagen.storage import keys
from datagen.storage.interfaces import StateStore, StorageError

logger = logging.getLogger(__name__)


class UserSettingsService:
  def __init__(self, state: StateStore, *, inference: InferenceClient | None = None) -> None:
    self._state = state
    self._inference = inference

  async def read(self, owner: str) -> UserInferenceSettings:
    raw = await self._state.get(keys.user_settings_key(owner))
    if raw is None:
      return UserInferenceSettings()
    try:
      return decode_document(raw, UserInferenceSettings)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
      raise StorageError(f"Stored settings for {owner} are corrupt: {exc}") from exc

  async def save(self, owner: str, changes: dict[str, Any]) -> UserInferenceSettings:
    """Merge changes into the stored settings; None leaves a field as is, an empty string clears it."""
    current = await self.read(owner)
    updates: dict[str, Any] = {}
    for name in ("base_url", "api_key", "model", "path"):
      if name not in changes or changes[name] is None:
        continue
      value = str(changes[name]).strip()
      updates[name] = value or None
    merged = msgspec.structs.replace(current, **updates)
    await self._state.set(keys.user_settings_key(owner), encode_document(merged))
    return merged

  async def list_models(self, owner: str, *, base_url: str | None = None, api_key: str | None = None) -> list[Any]:
    """List the models of the owner's gateway; explicit arguments override the stored settings."""
    if self._inference is None:
      raise RuntimeError("UserSettingsService was built without an inference client.")
    stored = await self.read(owner)
    resolved_url = (base_url or "").strip() or stored.base_url
    if not resolved_url:
      raise GatewayConfigError("Inference base URL missing")
    try:
      models = await self._inference.list_models(resolved_url, (api_key or "").strip() or stored.api_key)
    except InferenceError as exc:
      logger.warning("Model list for %s from %s failed: %s", owner, resolved_url, exc)
      raise ModelListError(str(exc) or "Failed to load models") from exc
    logger.info("Listed %s models for %s from %s", len(models), owner, resolved_url)
    return models


def public_view(settings: UserInferenceSettings) -> dict[str, Any]:
  """Settings as shown to clients: the key itself never leaves the server."""
  return {"baseUrl": settings.base_url, "model": settings.model, "path": settings.path, "hasApiKey": bool(settings.api_key)}

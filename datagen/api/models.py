from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from datagen.jobs.models import InferenceSettings


class _CamelModel(BaseModel):
  model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class InferenceOverrides(_CamelModel):
  """Optional external gateway selection for one job."""

  use_external_api: StrictBool = Field(default=False, description="Send generation calls to the owner's external gateway.")
  base_url: StrictStr | None = Field(default=None, min_length=1, description="Gateway base URL; falls back to the owner's settings.")
  path: StrictStr | None = Field(default=None, min_length=1, description="Endpoint path appended to the base URL.")
  model: StrictStr | None = Field(default=None, min_length=1, description="Model name forwarded to the endpoint.")
  parameters: dict[str, Any] | None = Field(default=None, description="Extra generation parameters merged into every call.")

  def to_settings(self) -> InferenceSettings:
    return InferenceSettings(use_external_api=self.use_external_api, base_url=self.base_url, path=self.path, model=self.model, parameters=self.parameters)


def _strip_peers(value: list[str] | None) -> list[str] | None:
  if value is None:
    return None
  return [peer.strip() for peer in value]


class DraftRequest(_CamelModel):
  """Request a schema proposal for a prompt."""

  owner: StrictStr = Field(min_length=1, description="Owner of the future job.")
  prompt: StrictStr = Field(min_length=1, description="What the records should describe.", examples=["Customer support tickets for a bike shop"])
  total_records: int = Field(ge=1, description="Number of records the job will generate.")
  dataset_mode: StrictBool = Field(default=False, description="Generate a multi-row dataset style schema.")
  schema_refreshes: int = Field(default=0, ge=0, description="How many times this draft was regenerated already.")
  inference: InferenceOverrides = Field(default_factory=InferenceOverrides)


class ConfirmJobRequest(_CamelModel):
  """Register a job whose schema was already reviewed."""

  owner: StrictStr = Field(min_length=1)
  title: StrictStr = Field(default="", description="Job title; derived from the description when empty.")
  description: StrictStr = Field(min_length=1)
  instructions: StrictStr = Field(min_length=1, description="Prompt sent with every record generation call.")
  json_schema: dict[str, Any] = Field(alias="schema", description="JSON Schema every record must satisfy.")
  total_records: int = Field(ge=1)
  dataset_mode: StrictBool = False
  peers: list[StrictStr] | None = Field(default=None, description="Peer ids sharing the work; defaults to the configured peers.")
  inference: InferenceOverrides = Field(default_factory=InferenceOverrides)
  schema_generated_at: StrictStr | None = None
  schema_duration_ms: int = Field(default=0, ge=0)
  schema_refreshes: int = Field(default=0, ge=0)

  @field_validator("peers")
  @classmethod
  def _normalize_peers(cls, value: list[str] | None) -> list[str] | None:
    return _strip_peers(value)


class GenerateJobRequest(_CamelModel):
  """Create a job and run the schema phase server-side unless a schema is supplied."""

  owner: StrictStr = Field(min_length=1)
  prompt: StrictStr = Field(min_length=1)
  total_records: int = Field(ge=1)
  title: StrictStr | None = None
  instructions: StrictStr | None = None
  dataset_mode: StrictBool = False
  json_schema: dict[str, Any] | None = Field(default=None, alias="schema")
  peers: list[StrictStr] | None = None
  inference: InferenceOverrides = Field(default_factory=InferenceOverrides)

  @field_validator("peers")
  @classmethod
  def _normalize_peers(cls, value: list[str] | None) -> list[str] | None:
    return _strip_peers(value)


class TaskCreateRequest(_CamelModel):
  """Queue a single-process generation task."""

  owner: StrictStr = Field(min_length=1)
  prompt: StrictStr = Field(min_length=1)
  count: int = Field(ge=1)
  dataset_mode: StrictBool = False
  use_custom_inference: StrictBool = Field(default=False, description="Use the owner's stored gateway settings.")
  inference_base_url: StrictStr | None = None
  inference_path: StrictStr | None = None
  inference_model: StrictStr | None = None


class UserSettingsUpdate(_CamelModel):
  """Partial update of an owner's gateway defaults; an empty string clears a field."""

  base_url: StrictStr | None = None
  api_key: StrictStr | None = None
  model: StrictStr | None = None
  path: StrictStr | None = None


class ModelListRequest(_CamelModel):
  """Gateway to list models from; unset fields fall back to the owner's stored settings."""

  base_url: StrictStr | None = None
  api_key: StrictStr | None = None

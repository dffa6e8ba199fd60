"""Local value generation used for offline inference and for backfilling partial records."""

from __future__ import annotations

import random
from datetime import timedelta
from enum import StrEnum
from typing import Any

from datagen.utils.timeutil import to_iso, utc_now

_WORDS = (
  "alpha",
  "brisk",
  "cobalt",
  "delta",
  "ember",
  "fable",
  "glow",
  "harbor",
  "ivory",
  "jolt",
  "keystone",
  "lumen",
  "motive",
  "nova",
  "orbit",
  "pulse",
  "quartz",
  "ripple",
  "solstice",
  "tandem",
  "uplink",
  "vector",
  "whisper",
  "zenith",
)
_SCHEMA_TYPE_POOL = ("string", "number", "boolean", "date")


class JsonKind(StrEnum):
  """Tag for a decoded JSON value."""

  OBJECT = "object"
  ARRAY = "array"
  STRING = "string"
  NUMBER = "number"
  BOOL = "bool"
  NULL = "null"


def json_kind(value: Any) -> JsonKind:
  """Classify a decoded JSON value."""
  if value is None:
    return JsonKind.NULL
  # bool is an int subclass, check it first.
  if isinstance(value, bool):
    return JsonKind.BOOL
  if isinstance(value, int | float):
    return JsonKind.NUMBER
  if isinstance(value, str):
    return JsonKind.STRING
  if isinstance(value, list | tuple):
    return JsonKind.ARRAY
  if isinstance(value, dict):
    return JsonKind.OBJECT
  raise TypeError(f"Unsupported JSON value of type {type(value).__name__}")


def random_sentence(rng: random.Random) -> str:
  length = 6 + rng.randrange(6)
  text = " ".join(rng.choice(_WORDS) for _ in range(length))
  return text[0].upper() + text[1:] + "."


def _declared_type(definition: Any) -> str:
  """Return the first non-null declared type of a field definition, defaulting to string."""
  if json_kind(definition) is not JsonKind.OBJECT:
    return "string"
  declared = definition.get("type", definition.get("datatype"))
  match json_kind(declared):
    case JsonKind.STRING:
      return declared
    case JsonKind.ARRAY:
      named = [item for item in declared if isinstance(item, str) and item != "null"]
      return named[0] if named else "null"
    case _:
      return "string"


def value_for_type(type_name: str, rng: random.Random) -> Any:
  """Fabricate a value for a declared field type."""
  normalized = type_name.lower()
  if "int" in normalized:
    return rng.randrange(10000)
  if normalized in {"number", "float", "double", "decimal"}:
    return round(rng.random() * 10000) / 10
  if normalized in {"boolean", "bool"}:
    return rng.random() > 0.5
  if "date" in normalized or "time" in normalized:
    return to_iso(utc_now() - timedelta(seconds=rng.random() * 60 * 60 * 24 * 30))
  if normalized == "null":
    return None
  if normalized == "array":
    return []
  if normalized == "object":
    return {}
  return random_sentence(rng)


def value_for_definition(definition: Any, rng: random.Random) -> Any:
  """Fabricate a value for a field definition, honoring `enum` when present."""
  if json_kind(definition) is JsonKind.OBJECT:
    choices = definition.get("enum")
    if json_kind(choices) is JsonKind.ARRAY and choices:
      return rng.choice(choices)
    declared_format = definition.get("format")
    if isinstance(declared_format, str) and ("date" in declared_format or "time" in declared_format):
      return value_for_type("date-time", rng)
  return value_for_type(_declared_type(definition), rng)


def record_from_schema(schema: Any, rng: random.Random) -> dict[str, Any] | None:
  """Build a record from a `fields` list or a JSON Schema `properties` map."""
  if json_kind(schema) is not JsonKind.OBJECT:
    return None
  record: dict[str, Any] = {}

  fields = schema.get("fields")
  if json_kind(fields) is JsonKind.ARRAY:
    for field in fields:
      if json_kind(field) is not JsonKind.OBJECT or not field.get("name"):
        continue
      record[str(field["name"])] = value_for_definition(field, rng)
    if record:
      return record

  properties = schema.get("properties")
  if json_kind(properties) is JsonKind.OBJECT:
    for name, definition in properties.items():
      record[name] = value_for_definition(definition, rng)
    if record:
      return record

  return None


def looks_like_schema(value: Any) -> bool:
  """Return True when a model answer is a schema rather than a record."""
  if json_kind(value) is not JsonKind.OBJECT:
    return False
  fields = value.get("fields")
  if json_kind(fields) is JsonKind.ARRAY and fields:
    return True
  if json_kind(value.get("properties")) is JsonKind.OBJECT:
    return True
  declared = value.get("type")
  return isinstance(declared, str) and declared.lower() == "object"


def backfill_record(record: Any, schema: Any, rng: random.Random) -> Any:
  """Fill schema fields the model left out without touching the ones it provided."""
  if json_kind(record) is not JsonKind.OBJECT:
    return record
  template = record_from_schema(schema, rng)
  if template is None:
    return record
  return {**template, **record}


def coerce_record(output: Any, schema: Any, rng: random.Random) -> Any:
  """Post-process a model answer into a record conforming to the known schema fields."""
  record = output
  if looks_like_schema(record):
    # The model echoed a schema; synthesize from the known schema or, failing that, the echo.
    record = record_from_schema(schema if schema is not None else record, rng) or record
  if schema is not None:
    record = backfill_record(record, schema, rng)
  return record


def random_schema(rng: random.Random) -> dict[str, Any]:
  """Fabricate a small JSON Schema for offline mode."""
  count = 3 + rng.randrange(3)
  properties: dict[str, Any] = {}
  for index in range(count):
    type_name = rng.choice(_SCHEMA_TYPE_POOL)
    definition: dict[str, Any] = {"description": random_sentence(rng)}
    if type_name == "date":
      definition.update({"type": "string", "format": "date-time"})
    else:
      definition["type"] = type_name
    properties[f"field_{index + 1}"] = definition
  return {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "SyntheticRecord",
    "description": "Schema generated locally in offline inference mode.",
    "type": "object",
    "properties": properties,
    "required": list(properties),
    "additionalProperties": False,
  }


def random_record(rng: random.Random) -> dict[str, Any]:
  """Fabricate an unconstrained record when no schema is known."""
  record: dict[str, Any] = {}
  for index in range(2 + rng.randrange(4)):
    record[f"field_{index + 1}"] = round(rng.random() * 1000) / 10 if rng.random() > 0.5 else random_sentence(rng)
  record["id"] = f"{rng.getrandbits(32):08x}"
  record["generatedAt"] = to_iso(utc_now())
  return record

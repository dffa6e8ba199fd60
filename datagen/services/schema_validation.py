"""Clean up and check generation schemas before a job is created."""

from __future__ import annotations

from typing import Any

from datagen.services.errors import InvalidSchemaError

_NOISE_KEYS = {"examples", "default"}


def _is_object_node(node: dict[str, Any]) -> bool:
  declared = node.get("type")
  return declared == "object" or (isinstance(declared, list) and "object" in declared) or isinstance(node.get("properties"), dict)


def sanitize_schema(schema: Any) -> Any:
  """Return a copy without example noise, with every object node closed to extra keys."""
  if isinstance(schema, list):
    return [sanitize_schema(item) for item in schema]
  if not isinstance(schema, dict):
    return schema
  cleaned = {key: sanitize_schema(value) for key, value in schema.items() if key not in _NOISE_KEYS}
  if _is_object_node(cleaned):
    cleaned["additionalProperties"] = False
  return cleaned


def schema_problems(schema: Any) -> list[str]:
  """List everything wrong with a record schema; empty when it is usable."""
  if not isinstance(schema, dict):
    return ["schema must be a JSON object"]

  problems: list[str] = []
  if schema.get("type") != "object":
    problems.append('root "type" must be "object"')

  properties = schema.get("properties")
  if not isinstance(properties, dict) or not properties:
    problems.append('"properties" must be a non-empty object')
    properties = {}
  for name, definition in properties.items():
    if not isinstance(definition, dict):
      problems.append(f'property "{name}" must be a schema object')
    elif "type" not in definition:
      problems.append(f'property "{name}" must declare a "type"')

  required = schema.get("required")
  if required is not None:
    if not isinstance(required, list) or not all(isinstance(item, str) for item in required):
      problems.append('"required" must be a list of property names')
    else:
      problems.extend(f'required property "{name}" is not declared' for name in required if name not in properties)
  return problems


def validate_json_schema(schema: Any) -> dict[str, Any]:
  """Raise InvalidSchemaError unless the schema is usable; return it unchanged otherwise."""
  problems = schema_problems(schema)
  if problems:
    raise InvalidSchemaError(problems)
  return schema

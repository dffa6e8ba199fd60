"""System prompts and response-format payloads for schema and record generation."""

from __future__ import annotations

from typing import Any

RECORD_SYSTEM_PROMPT = """
You are DataGenRecord, a strict JSON record generator.

You receive a description of ONE record and usually a JSON Schema that acts as the contract.
Output exactly one JSON object that conforms to that schema.

Output rules:
- Strict RFC 8259 JSON: double quotes, no trailing commas, no comments, no NaN or Infinity.
- A single object at the top level and nothing else: no markdown, no code fences, no prose.
- When a schema is given, include every required property with its exact name and type, respect its
  constraints and never add undeclared keys.

All data must be fictional. Use reserved domains such as example.com for emails and URLs.
Vary identifiers, timestamps and text between calls while staying within the schema.
""".strip()

DATASET_RECORD_SYSTEM_PROMPT = """
You are DataGenDatasetRecord, a strict JSON generator for synthetic machine-learning dataset rows.

You receive a description of ONE row and usually a JSON Schema that acts as the contract.
Output exactly one JSON object that conforms to that schema.

Output rules:
- Strict RFC 8259 JSON, a single top-level object, no markdown, no code fences, no prose.
- Include every required property, match types and constraints, never add undeclared keys.

Labeling rules:
- The "label" field is ground truth and must agree with every other field.
- Never repeat the label text or an obvious synonym in free-text fields, identifiers or templates.
- Make the other fields realistically predictive of the label.

All data must be fictional. Vary phrasing, numbers and entities between calls.
""".strip()

SCHEMA_SYSTEM_PROMPT = """
You are DataGenSchema, a JSON Schema author.

Given the description of ONE record, output exactly one JSON Schema (draft 2020-12) for a single JSON object.

Rules:
- Output a single valid JSON object with no markdown, code fences or prose.
- Include "$schema", "type": "object", "properties", "required" and "additionalProperties": false.
- Use only the standard types string, integer, number, boolean, object, array and null.
- Mark fields required unless the description clearly implies they are optional.
- Add constraints (enum, minimum, maximum, pattern, format, minItems) where they help.
- Keep descriptions under twelve words and never include "examples".
""".strip()

DATASET_SCHEMA_SYSTEM_PROMPT = """
You are DataGenDatasetSchema, a JSON Schema author for synthetic machine-learning datasets.

Given the description of ONE dataset row, output exactly one JSON Schema (draft 2020-12) for a single JSON object.

Rules:
- Output a single valid JSON object with no markdown, code fences or prose.
- Include "$schema", "type": "object", "properties", "required" and "additionalProperties": false.
- Include a required "label" field holding the ground-truth target, expressed as an "enum". Infer two to
  seven classes when none are given. Use an array of strings for multi-label tasks.
- Prefer a required "record_id" string field.
- Do not add properties that restate the label, and tell free-text fields not to mention it.
- Keep descriptions under twelve words and never include "examples".
""".strip()

SCHEMA_USER_SUFFIX = "\n".join(
  [
    "",
    "Return ONLY the JSON Schema object.",
    "Do NOT include example values inside properties.",
    "Every property value must be a JSON Schema object with a type field.",
  ]
)

RECORD_SCHEMA_INSTRUCTION = "\n".join(
  [
    "Generate one example record that CONFORMS to this JSON schema.",
    "Return ONLY the record JSON object (never the schema).",
  ]
)

# Trimmed draft 2020-12 meta-schema used as the response-format constraint for schema calls.
JSON_SCHEMA_META_SCHEMA: dict[str, Any] = {
  "$schema": "https://json-schema.org/draft/2020-12/schema",
  "$id": "https://json-schema.org/draft/2020-12/schema",
  "title": "Core and Validation specifications meta-schema",
  "type": ["object", "boolean"],
  "properties": {
    "$schema": {"type": "string", "format": "uri"},
    "$id": {"type": "string"},
    "title": {"type": "string"},
    "description": {"type": "string"},
    "type": {
      "anyOf": [
        {"enum": ["array", "boolean", "integer", "null", "number", "object", "string"]},
        {"type": "array", "items": {"enum": ["array", "boolean", "integer", "null", "number", "object", "string"]}, "minItems": 1, "uniqueItems": True},
      ]
    },
    "properties": {"type": "object", "additionalProperties": {"$dynamicRef": "#meta"}, "default": {}},
    "required": {"type": "array", "items": {"type": "string"}, "uniqueItems": True, "default": []},
    "additionalProperties": {"$dynamicRef": "#meta"},
    "items": {"$dynamicRef": "#meta"},
    "enum": {"type": "array", "items": True},
    "format": {"type": "string"},
    "pattern": {"type": "string", "format": "regex"},
    "minimum": {"type": "number"},
    "maximum": {"type": "number"},
    "minLength": {"type": "integer", "minimum": 0},
    "maxLength": {"type": "integer", "minimum": 0},
    "minItems": {"type": "integer", "minimum": 0},
    "maxItems": {"type": "integer", "minimum": 0},
  },
  "$dynamicAnchor": "meta",
}

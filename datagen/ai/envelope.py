"""Locate the generated text inside a chat-completion response envelope."""

from __future__ import annotations

from typing import Any

from datagen.ai.json_parser import maybe_parse_nested, parse_json_content

_SUCCESS_STATUSES = {"ok", "success", "succeeded", "200"}
_MISSING = object()


class EnvelopeError(ValueError):
  """Envelope reported a failure or carried no content."""


def _dig(value: Any, *path: str | int) -> Any:
  """Follow a path of keys and indexes, returning _MISSING on the first gap."""
  current = value
  for step in path:
    if isinstance(step, int):
      if not isinstance(current, list) or len(current) <= step:
        return _MISSING
      current = current[step]
      continue
    if not isinstance(current, dict) or step not in current:
      return _MISSING
    current = current[step]
  return _MISSING if current is None else current


def text_from_part(part: Any) -> str | None:
  """Extract text from a content part shaped as a string, `{text}`, `{text: {value}}` or `{content: {text}}`."""
  if isinstance(part, str):
    return part
  if not isinstance(part, dict):
    return None
  for path in (("text",), ("text", "value"), ("content", "text")):
    value = _dig(part, *path)
    if isinstance(value, str):
      return value
  return None


def extract_text_payload(value: Any) -> str | None:
  """Join the text of a content value that may be a string, a part or a list of parts."""
  if isinstance(value, list):
    fragments = [text for text in (text_from_part(entry) for entry in value) if text is not None]
    if fragments:
      return "\n".join(fragments).strip()
    return None
  return text_from_part(value)


def envelope_error(data: Any) -> str | None:
  """Return the failure reported inside the envelope, if any."""
  result = _dig(data, "result")
  if not isinstance(result, dict):
    return None
  if result.get("error"):
    return str(result["error"])
  status = result.get("status")
  if isinstance(status, str) and status.lower() not in _SUCCESS_STATUSES:
    return status.lower()
  return None


def unwrap_envelope(data: Any) -> Any:
  """Return the JSON value generated by the model.

  Raises EnvelopeError when the envelope reports a failure or has no content and JsonRecoveryError when
  the generated text cannot be recovered into JSON.
  """
  error = envelope_error(data)
  if error is not None:
    raise EnvelopeError(f"Inference result error: {error}")

  full_output = _dig(data, "result", "FULL_OUTPUT")
  payload = data if full_output is _MISSING else full_output
  if isinstance(payload, list):
    payload = payload[0] if payload else _MISSING

  content = _MISSING
  for path in (("choices", 0, "message", "content"), ("message", "content"), ("content",)):
    content = _dig(payload, *path)
    if content is not _MISSING:
      break

  if content is not _MISSING:
    text = extract_text_payload(content)
    if text is not None and text.strip():
      return parse_json_content(text)
    return maybe_parse_nested(content)

  text_response = _dig(data, "result", "TEXT_RESPONSE")
  if isinstance(text_response, list):
    text_response = text_response[0] if text_response else _MISSING
  text = extract_text_payload(text_response) if text_response is not _MISSING else None
  if text is not None and text.strip():
    return parse_json_content(text)

  if payload is _MISSING or (payload is data and isinstance(data, dict) and "result" in data):
    raise EnvelopeError("Inference response missing content")
  # Endpoints without a chat envelope return the generated value directly.
  if isinstance(payload, str):
    return parse_json_content(payload)
  return payload

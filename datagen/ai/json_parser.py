"""Recover JSON values from free-form model output.

Model responses routinely wrap JSON in prose or code fences, leave trailing commas, or stop mid-object
when they hit a token limit. Recovery is an ordered pipeline: every candidate substring is run through
each parse strategy in turn and the first value that parses wins.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterable, Sequence
from typing import Any

_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_FRACTION_RE = re.compile(r":\s*([0-9]+/[0-9]+[^,}\]]*)")
_STRING_LITERAL_RE = re.compile(r'("(?:[^"\\]|\\.)*(?:"|$))', re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}

ParseStrategy = Callable[[str], Any]


class JsonRecoveryError(ValueError):
  """Raised when no candidate could be recovered into JSON."""


def strip_code_fences(text: str) -> str:
  """Remove a leading ```lang fence and its trailing fence."""
  trimmed = text.strip()
  if not trimmed.startswith("```"):
    return trimmed
  without_start = _FENCE_OPEN_RE.sub("", trimmed, count=1)
  end_index = without_start.rfind("```")
  if end_index == -1:
    return without_start.strip()
  return without_start[:end_index].strip()


def normalize_candidate(text: str) -> str:
  """Strip a BOM, drop trailing commas and quote bare fractions such as `3/4`."""
  trimmed = text.strip().lstrip("\ufeff")
  # Odd indexes are string literals and are left alone.
  parts = _STRING_LITERAL_RE.split(trimmed)
  for index in range(0, len(parts), 2):
    without_commas = _TRAILING_COMMA_RE.sub(r"\1", parts[index])
    parts[index] = _FRACTION_RE.sub(lambda match: f': "{match.group(1).strip()}"', without_commas)
  return "".join(parts)


def _open_brackets(text: str) -> tuple[list[str], bool, bool]:
  """Scan text and return the unclosed bracket stack plus the trailing string/escape state."""
  stack: list[str] = []
  in_string = False
  escape = False

  for char in text:
    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue

    if char == '"':
      in_string = True
    elif char in _CLOSERS:
      stack.append(_CLOSERS[char])
    elif char in "}]" and stack and stack[-1] == char:
      stack.pop()

  return stack, in_string, escape


def append_missing_closers(text: str) -> str:
  """Append the closing brackets that are still open at the end of the text."""
  stack, _, _ = _open_brackets(text)
  return text.strip() + "".join(reversed(stack))


def close_dangling_string(text: str) -> str:
  """Terminate an unterminated string literal at the end of the text."""
  _, in_string, escape = _open_brackets(text)
  closed = text.strip()
  if escape:
    closed += "\\"
  if in_string:
    closed += '"'
  return closed


def extract_balanced_blocks(text: str) -> list[str]:
  """Return every top-level balanced `{...}` or `[...]` block, ignoring brackets inside strings."""
  blocks: list[str] = []
  stack: list[str] = []
  start = -1
  in_string = False
  escape = False

  for index, char in enumerate(text):
    if in_string:
      if escape:
        escape = False
      elif char == "\\":
        escape = True
      elif char == '"':
        in_string = False
      continue

    if char == '"':
      in_string = True
      continue

    if char in _CLOSERS:
      if not stack:
        start = index
      stack.append(_CLOSERS[char])
      continue

    if char in "}]" and stack and stack[-1] == char:
      stack.pop()
      if not stack and start >= 0:
        blocks.append(text[start : index + 1])
        start = -1

  return blocks


def collect_candidates(raw: str) -> list[str]:
  """List substrings worth parsing, most faithful first, without duplicates."""
  candidates: list[str] = []

  def push(value: str | None) -> None:
    if value is None:
      return
    trimmed = value.strip()
    if trimmed and trimmed not in candidates:
      candidates.append(trimmed)

  without_fences = strip_code_fences(raw)
  push(raw)
  push(without_fences)
  for block in extract_balanced_blocks(without_fences):
    push(block)

  for opener, closer in _CLOSERS.items():
    first = without_fences.find(opener)
    if first == -1:
      continue
    last = without_fences.rfind(closer)
    if last > first:
      push(without_fences[first : last + 1])
    # Truncated output never reaches its closer; keep the tail for closer repair.
    push(without_fences[first:])

  return candidates


def parse_strict(candidate: str) -> Any:
  """Valid JSON is returned as written, before any repair touches it."""
  return json.loads(candidate)


def parse_normalized(candidate: str) -> Any:
  return json.loads(normalize_candidate(candidate))


def parse_with_closers(candidate: str) -> Any:
  return json.loads(append_missing_closers(normalize_candidate(candidate)))


def parse_with_closed_string(candidate: str) -> Any:
  return json.loads(append_missing_closers(close_dangling_string(normalize_candidate(candidate))))


DEFAULT_STRATEGIES: tuple[ParseStrategy, ...] = (parse_strict, parse_normalized, parse_with_closers, parse_with_closed_string)


def _first_success(candidate: str, strategies: Iterable[ParseStrategy]) -> tuple[bool, Any]:
  for strategy in strategies:
    try:
      return True, strategy(candidate)
    except ValueError:
      continue
  return False, None


def maybe_parse_nested(value: Any, strategies: Sequence[ParseStrategy] = DEFAULT_STRATEGIES) -> Any:
  """Decode a JSON value that arrived as a JSON-encoded string, once."""
  if not isinstance(value, str):
    return value
  trimmed = value.strip()
  looks_encoded = (trimmed.startswith("{") and trimmed.endswith("}")) or (trimmed.startswith("[") and trimmed.endswith("]"))
  if not looks_encoded:
    return value
  ok, parsed = _first_success(trimmed, strategies)
  return parsed if ok else value


def parse_json_content(raw: str, strategies: Sequence[ParseStrategy] = DEFAULT_STRATEGIES) -> Any:
  """Recover a JSON value from model text or raise JsonRecoveryError."""
  for candidate in collect_candidates(raw):
    ok, parsed = _first_success(candidate, strategies)
    if ok:
      return maybe_parse_nested(parsed, strategies)
  raise JsonRecoveryError("Failed to parse inference response as JSON")

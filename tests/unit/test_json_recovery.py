"""Unit tests for recovering JSON values from model output."""

from __future__ import annotations

import pytest

from datagen.ai.json_parser import (
  JsonRecoveryError,
  append_missing_closers,
  close_dangling_string,
  collect_candidates,
  extract_balanced_blocks,
  normalize_candidate,
  parse_json_content,
  parse_normalized,
  strip_code_fences,
)


def test_prose_prefix_and_trailing_comma() -> None:
  assert parse_json_content('Sure, here you go:\n{"a":1,}\n') == {"a": 1}


def test_truncated_array_is_closed() -> None:
  assert parse_json_content('{"a": [1, 2') == {"a": [1, 2]}


def test_fenced_block_is_returned_unchanged() -> None:
  raw = '```json\n{"name": "Widget", "tags": ["a", "b"]}\n```'
  assert parse_json_content(raw) == {"name": "Widget", "tags": ["a", "b"]}


def test_truncated_string_is_terminated_before_closing() -> None:
  assert parse_json_content('{"title": "Half a sent') == {"title": "Half a sent"}


def test_json_encoded_string_is_decoded_once() -> None:
  assert parse_json_content('"{\\"a\\": 2}"') == {"a": 2}


def test_top_level_array_in_prose() -> None:
  assert parse_json_content("Here are the rows: [1, 2, 3] enjoy") == [1, 2, 3]


def test_unrecoverable_text_raises() -> None:
  with pytest.raises(JsonRecoveryError):
    parse_json_content("I cannot help with that.")


def test_recovery_error_is_a_value_error() -> None:
  assert issubclass(JsonRecoveryError, ValueError)


def test_strip_code_fences_without_closing_fence() -> None:
  assert strip_code_fences('```json\n{"a": 1}') == '{"a": 1}'
  assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_normalize_candidate_removes_bom_commas_and_quotes_fractions() -> None:
  assert normalize_candidate("\ufeff{\"a\": [1, 2,], }") == '{"a": [1, 2] }'
  assert parse_normalized('{"ratio": 3/4}') == {"ratio": "3/4"}


def test_append_missing_closers_ignores_brackets_in_strings() -> None:
  assert append_missing_closers('{"a": "[{", "b": [1') == '{"a": "[{", "b": [1]}'


def test_close_dangling_string() -> None:
  assert close_dangling_string('{"a": "abc') == '{"a": "abc"'
  assert close_dangling_string('{"a": "abc"') == '{"a": "abc"'


def test_extract_balanced_blocks_returns_top_level_blocks_only() -> None:
  text = 'first {"a": {"b": 1}} then [1, [2]] and "{not a block}"'
  assert extract_balanced_blocks(text) == ['{"a": {"b": 1}}', "[1, [2]]"]


def test_candidates_are_unique_and_start_with_raw_text() -> None:
  raw = '{"a": 1}'
  candidates = collect_candidates(raw)
  assert candidates[0] == raw
  assert len(candidates) == len(set(candidates))


def test_valid_json_is_returned_without_repairs() -> None:
  assert parse_json_content('{"note": "Mix: 3/4 cup flour"}') == {"note": "Mix: 3/4 cup flour"}
  assert parse_json_content('{"tags": "a, ]"}') == {"tags": "a, ]"}


def test_repairs_skip_string_literals() -> None:
  raw = 'Result: {"note": "Mix: 3/4 cup, ]", "ratio": 1/2, "tags": ["x",],}'
  assert parse_json_content(raw) == {"note": "Mix: 3/4 cup, ]", "ratio": "1/2", "tags": ["x"]}
  assert normalize_candidate('{"a": "b,}", }') == '{"a": "b,}" }'

"""Render generated records as JSON or CSV."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable, Sequence
from typing import Any

from datagen.services.errors import JobValidationError

EXPORT_FORMATS = ("json", "csv")


def normalize_rows(results: Iterable[Any]) -> list[dict[str, Any]]:
  """Keep objects as rows and wrap every other value as `{"value": x}`."""
  return [item if isinstance(item, dict) else {"value": item} for item in results]


def _cell(value: Any) -> str:
  if value is None:
    return ""
  if isinstance(value, str):
    return value
  return json.dumps(value)


def to_csv(rows: Sequence[dict[str, Any]], *, delimiter: str = ",") -> str:
  """Write rows under the union of their keys, in first-seen order."""
  headers: list[str] = []
  for row in rows:
    for key in row:
      if key not in headers:
        headers.append(key)
  if not headers:
    return ""

  buffer = io.StringIO()
  writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
  writer.writerow(headers)
  for row in rows:
    writer.writerow([_cell(row.get(header)) for header in headers])
  return buffer.getvalue().rstrip("\n")


def render_export(results: Sequence[Any], export_format: str) -> list[Any] | str:
  """Return records as a list for json or as CSV text."""
  if export_format not in EXPORT_FORMATS:
    raise JobValidationError(f"Unknown export format {export_format!r}; expected one of {', '.join(EXPORT_FORMATS)}.")
  if export_format == "csv":
    return to_csv(normalize_rows(results))
  return list(results)

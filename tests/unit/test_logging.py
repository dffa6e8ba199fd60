from __future__ import annotations

import logging
import sys

from datagen.core.logging import TruncatedFormatter, _file_handler


def _deep_failure(depth: int) -> None:
  if depth == 0:
    raise RuntimeError("store unreachable")
  _deep_failure(depth - 1)


def test_truncated_formatter_keeps_head_and_innermost_frames() -> None:
  try:
    _deep_failure(10)
  except RuntimeError:
    exc_info = sys.exc_info()

  formatted = TruncatedFormatter().formatException(exc_info)

  lines = formatted.splitlines()
  assert lines[0].startswith("Traceback")
  assert "    ..." in lines
  assert lines[-1] == "RuntimeError: store unreachable"


def test_file_handler_writes_one_file_per_peer(settings_factory, tmp_path) -> None:
  settings = settings_factory(log_dir=str(tmp_path / "logs"))

  handler, path = _file_handler(settings, "p2")
  try:
    record = logging.LogRecord("datagen.jobs.worker", logging.INFO, __file__, 1, "Checkpoint %s", ("job_1/p2",), None)
    handler.emit(record)
  finally:
    handler.close()

  assert path.name == "datagen-p2.log"
  assert "[datagen.jobs.worker] Checkpoint job_1/p2" in path.read_text(encoding="utf-8")

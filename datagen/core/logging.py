import logging
import logging.handlers
import sys
import traceback
from pathlib import Path
from types import TracebackType

from datagen.config import Settings

LOG_FILENAME = "datagen.log"
LOG_LINE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_TRACEBACK_TAIL = 5
_FRAMEWORK_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")

_initialized_path: Path | None = None

ExcInfo = tuple[type[BaseException] | None, BaseException | None, TracebackType | None]


class TruncatedFormatter(logging.Formatter):
  """Console formatter keeping the exception line and the innermost frames only."""

  # ruff: noqa: N802
  def formatException(self, ei: ExcInfo) -> str:
    lines = traceback.format_exception(*ei)
    if len(lines) <= _TRACEBACK_TAIL + 1:
      return "".join(lines)
    return "".join([lines[0], "    ...\n", *lines[-_TRACEBACK_TAIL:]])


def _file_handler(settings: Settings, peer_id: str) -> tuple[logging.Handler, Path]:
  log_dir = Path(settings.log_dir).resolve()
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  # Peers sharing a volume write separate files.
  log_path = log_dir / (LOG_FILENAME if peer_id == "local" else f"datagen-{peer_id}.log")
  handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return handler, log_path


def setup_logging(settings: Settings) -> Path:
  """Route root, uvicorn and fastapi loggers to stdout and a rotating file; return the file path."""
  stream_handler = logging.StreamHandler(sys.stdout)
  stream_handler.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  file_handler, log_path = _file_handler(settings, settings.peer_id)
  handlers: list[logging.Handler] = [stream_handler, file_handler]

  level = logging.DEBUG if settings.debug else logging.INFO
  logging.basicConfig(level=level, handlers=handlers, force=True)
  for name in _FRAMEWORK_LOGGERS:
    framework_logger = logging.getLogger(name)
    framework_logger.handlers = list(handlers)
    framework_logger.propagate = False
  for name in _NOISY_LOGGERS:
    logging.getLogger(name).setLevel(logging.WARNING)
  return log_path


def initialize_logging(settings: Settings) -> Path:
  """Set up logging on first call; later calls return the existing log file."""
  global _initialized_path
  if _initialized_path is not None:
    return _initialized_path
  _initialized_path = setup_logging(settings)

  logger = logging.getLogger("datagen.core.logging")
  logger.info("Logging to %s (env=%s)", _initialized_path, settings.environment)
  logger.info(
    "Peer %s of [%s]; store=%s; inference=%s; mock=%s; retry=%s",
    settings.peer_id,
    ",".join(settings.peers),
    settings.store_backend,
    settings.inference_base_url or "<unset>",
    settings.mock_inference,
    settings.retry_inference_on_failure,
  )
  return _initialized_path

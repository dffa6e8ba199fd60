"""Errors raised by the inference resilience layer."""

from __future__ import annotations


class InferenceError(RuntimeError):
  """Generation call failed after exhausting its attempts."""

  def __init__(self, message: str, *, failed_attempts: int = 1) -> None:
    super().__init__(message)
    self.failed_attempts = failed_attempts


class InferenceConfigError(InferenceError):
  """No generation endpoint is configured for the call."""


class InferenceHTTPError(InferenceError):
  """Endpoint answered with a non-success status or could not be reached."""

  def __init__(self, message: str, *, status_code: int | None = None, failed_attempts: int = 1) -> None:
    super().__init__(message, failed_attempts=failed_attempts)
    self.status_code = status_code


class InferenceResultError(InferenceError):
  """Envelope carried an error field or a non-success status."""


class InferenceParseError(InferenceError):
  """No JSON value could be recovered from the generated text."""

"""Domain errors surfaced by the job services."""

from __future__ import annotations


class DataGenError(Exception):
  """Base class for client-facing failures."""

  status_code = 400

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class JobValidationError(DataGenError):
  """Job request rejected before any state was written."""


class InvalidSchemaError(DataGenError):
  """Generation schema failed validation."""

  def __init__(self, problems: list[str]) -> None:
    super().__init__("Invalid JSON schema: " + "; ".join(problems))
    self.problems = list(problems)


class JobNotFoundError(DataGenError):
  status_code = 404

  def __init__(self, job_id: str) -> None:
    super().__init__(f"Job {job_id} not found.")
    self.job_id = job_id


class JobNotCompleteError(DataGenError):
  """Export requested before any results were finalized."""

  status_code = 409


class TaskNotFoundError(DataGenError):
  status_code = 404

  def __init__(self, task_id: str) -> None:
    super().__init__(f"Task {task_id} not found.")
    self.task_id = task_id


class SchemaGenerationError(DataGenError):
  """Schema phase of a draft failed after exhausting retries."""

  status_code = 502


class GatewayConfigError(DataGenError):
  """Owner has no gateway base URL to talk to."""


class ModelListError(DataGenError):
  """Gateway model listing failed or was unreachable."""

  status_code = 502

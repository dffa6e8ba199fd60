"""Single-process generation tasks: schema once, then every record, in one shard."""

from __future__ import annotations

import asyncio
import logging

from datagen.ai.errors import InferenceError
from datagen.ai.inference import InferenceClient, InferenceConfig
from datagen.config import Settings
from datagen.jobs.metrics import MetricsAggregator, MetricsDelta
from datagen.jobs.models import ShardError, TaskRecord
from datagen.jobs.state_machine import ensure_transition
from datagen.services.errors import JobValidationError
from datagen.services.user_settings import UserSettingsService
from datagen.storage.interfaces import StorageError
from datagen.storage.task_store import TaskStore
from datagen.utils.ids import generate_task_id
from datagen.utils.timeutil import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)


class TaskRunner:
  def __init__(
    self,
    *,
    settings: Settings,
    task_store: TaskStore,
    inference: InferenceClient,
    metrics: MetricsAggregator,
    user_settings: UserSettingsService,
    clock: Clock = utc_now,
  ) -> None:
    self._settings = settings
    self._tasks = task_store
    self._inference = inference
    self._metrics = metrics
    self._user_settings = user_settings
    self._clock = clock
    self._background: set[asyncio.Task[TaskRecord]] = set()

  def _now(self) -> str:
    return to_iso(self._clock())

  async def _bump(self, delta: MetricsDelta) -> None:
    try:
      await self._metrics.update(delta)
    except StorageError:
      logger.warning("Metrics update %s dropped", delta, exc_info=True)

  async def create_task(
    self,
    *,
    owner: str,
    prompt: str,
    count: int,
    dataset_mode: bool = False,
    use_custom_inference: bool = False,
    inference_base_url: str | None = None,
    inference_path: str | None = None,
    inference_model: str | None = None,
  ) -> TaskRecord:
    """Validate and persist a queued task."""
    if not prompt.strip():
      raise JobValidationError("Prompt must not be empty.")
    if not 1 <= count <= self._settings.max_records_per_job:
      raise JobValidationError(f"Record count must be between 1 and {self._settings.max_records_per_job}.")
    task = TaskRecord(
      id=generate_task_id(),
      owner=owner,
      prompt=prompt.strip(),
      count=count,
      created_at=self._now(),
      dataset_mode=dataset_mode,
      use_custom_inference=use_custom_inference,
      inference_base_url=inference_base_url,
      inference_path=inference_path,
      inference_model=inference_model,
    )
    await self._tasks.save_task(task)
    return task

  async def _inference_config(self, task: TaskRecord) -> InferenceConfig:
    if not task.use_custom_inference:
      return InferenceConfig()
    user = await self._user_settings.read(task.owner)
    base_url = task.inference_base_url or user.base_url
    if not base_url:
      return InferenceConfig()
    return InferenceConfig(base_url=base_url, api_key=user.api_key, path=task.inference_path or user.path, model=task.inference_model or user.model)

  async def run_task(self, task: TaskRecord) -> TaskRecord:
    """Run both phases, persisting the task after every step."""
    config = await self._inference_config(task)
    start = self._now()
    ensure_transition(task.status, "running")
    task.status = "running"
    task.step = "schema"
    task.schema_status = "running"
    task.started_at = start
    await self._tasks.save_task(task)
    await self._bump(MetricsDelta(total_jobs=1, total_records_requested=task.count, active_jobs=1, last_job_at=start))

    try:
      schema_result = await self._inference.generate_schema(task.prompt, dataset_mode=task.dataset_mode, config=config)
    except InferenceError as exc:
      message = str(exc) or type(exc).__name__
      logger.error("Task %s schema generation failed: %s", task.id, message)
      task.failures += max(1, exc.failed_attempts)
      task.schema_error = message
      task.schema_status = "failed"
      task.status = "failed"
      task.errors.append(ShardError(index=-1, message=message))
      task.finished_at = self._now()
      await self._tasks.save_task(task)
      await self._bump(MetricsDelta(active_jobs=-1, failed_jobs=1))
      return task

    task.failures += schema_result.failed_attempts
    task.schema = schema_result.schema
    task.schema_status = "succeeded"
    task.step = "records"
    await self._tasks.save_task(task)

    for index in range(task.count):
      try:
        result = await self._inference.generate_record(task.prompt, task.schema, dataset_mode=task.dataset_mode, config=config)
      except InferenceError as exc:
        logger.warning("Task %s record %s failed: %s", task.id, index, exc)
        task.failures += max(1, exc.failed_attempts)
        task.errors.append(ShardError(index=index, message=str(exc) or type(exc).__name__))
      else:
        task.failures += result.failed_attempts
        task.results.append(result.record)
        task.completed += 1
        await self._bump(MetricsDelta(total_records_generated=1))
      await self._tasks.save_task(task)

    # Record failures do not fail the task, as with a one-shard job.
    ensure_transition(task.status, "succeeded")
    task.status = "succeeded"
    task.step = "completed"
    task.finished_at = self._now()
    await self._tasks.save_task(task)
    await self._bump(MetricsDelta(active_jobs=-1))
    logger.info("Task %s %s with %s records and %s failed attempts", task.id, task.status, task.completed, task.failures)
    return task

  async def _run_logged(self, task: TaskRecord) -> TaskRecord:
    try:
      return await self.run_task(task)
    except Exception:  # noqa: BLE001
      logger.error("Task runner failed for %s", task.id, exc_info=True)
      return task

  def start_task(self, task: TaskRecord) -> asyncio.Task[TaskRecord]:
    """Run the task in the background and keep a reference until it finishes."""
    background = asyncio.create_task(self._run_logged(task))
    self._background.add(background)
    background.add_done_callback(self._background.discard)
    return background

  async def get_task(self, owner: str, task_id: str) -> TaskRecord | None:
    return await self._tasks.get_task(owner, task_id)

  async def list_tasks(self, owner: str) -> list[TaskRecord]:
    return await self._tasks.list_tasks(owner)

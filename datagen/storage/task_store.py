"""Per-owner task documents."""

from __future__ import annotations

import msgspec

from datagen.jobs.models import TaskRecord, decode_document, encode_document
from datagen.storage import keys
from datagen.storage.interfaces import StateStore, StorageError


class TaskStore:
  def __init__(self, state: StateStore) -> None:
    self._state = state

  async def save_task(self, task: TaskRecord) -> None:
    await self._state.hset(keys.user_tasks_key(task.owner), task.id, encode_document(task))

  async def get_task(self, owner: str, task_id: str) -> TaskRecord | None:
    raw = await self._state.hget(keys.user_tasks_key(owner), task_id)
    if raw is None:
      return None
    try:
      return decode_document(raw, TaskRecord)
    except (msgspec.DecodeError, msgspec.ValidationError) as exc:
      raise StorageError(f"Stored task {task_id} is corrupt: {exc}") from exc

  async def list_tasks(self, owner: str) -> list[TaskRecord]:
    """Return the owner's tasks, newest first."""
    tasks: list[TaskRecord] = []
    for task_id in await self._state.hkeys(keys.user_tasks_key(owner)):
      task = await self.get_task(owner, task_id)
      if task is not None:
        tasks.append(task)
    tasks.sort(key=lambda task: task.created_at, reverse=True)
    return tasks

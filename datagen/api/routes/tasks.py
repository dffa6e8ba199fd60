import logging

from fastapi import APIRouter, Depends, Query, status
from starlette.responses import Response

from datagen.api.models import TaskCreateRequest
from datagen.api.msgspec_utils import encode_msgspec_response
from datagen.jobs.models import TaskRecord
from datagen.services.errors import TaskNotFoundError
from datagen.services.exporters import render_export
from datagen.services.runtime import Runtime, get_runtime

router = APIRouter()
logger = logging.getLogger("datagen.api.routes.tasks")


async def _load_task(runtime: Runtime, owner: str, task_id: str) -> TaskRecord:
  task = await runtime.tasks.get_task(owner, task_id)
  if task is None:
    raise TaskNotFoundError(task_id)
  return task


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def create_task(  # noqa: B008
  request: TaskCreateRequest,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """Queue a single-process generation task and start it in the background."""
  task = await runtime.tasks.create_task(
    owner=request.owner,
    prompt=request.prompt,
    count=request.count,
    dataset_mode=request.dataset_mode,
    use_custom_inference=request.use_custom_inference,
    inference_base_url=request.inference_base_url,
    inference_path=request.inference_path,
    inference_model=request.inference_model,
  )
  runtime.tasks.start_task(task)
  logger.info("Task %s queued for %s with %s records", task.id, task.owner, task.count)
  return encode_msgspec_response(task, status_code=status.HTTP_202_ACCEPTED)


@router.get("/{owner}")
async def list_tasks(  # noqa: B008
  owner: str,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """List an owner's tasks, newest first."""
  return encode_msgspec_response(await runtime.tasks.list_tasks(owner))


@router.get("/{owner}/{task_id}")
async def get_task(  # noqa: B008
  owner: str,
  task_id: str,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  return encode_msgspec_response(await _load_task(runtime, owner, task_id))


@router.get("/{owner}/{task_id}/export")
async def export_task(  # noqa: B008
  owner: str,
  task_id: str,
  export_format: str = Query(default="json", alias="format"),  # noqa: B008
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """Download the records a task generated so far."""
  task = await _load_task(runtime, owner, task_id)
  exported = render_export(task.results, export_format)
  if isinstance(exported, str):
    return Response(content=exported, media_type="text/csv", headers={"Content-Disposition": f'attachment; filename="{task_id}.csv"'})
  return encode_msgspec_response(exported)

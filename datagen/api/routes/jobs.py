import logging

from fastapi import APIRouter, Depends, Query, status
from starlette.responses import Response

from datagen.api.models import ConfirmJobRequest, DraftRequest, GenerateJobRequest
from datagen.api.msgspec_utils import encode_msgspec_response
from datagen.services.jobs import ConfirmRequest, GenerateRequest
from datagen.services.runtime import Runtime, get_runtime

router = APIRouter()
logger = logging.getLogger("datagen.api.routes.jobs")


@router.post("/drafts")
async def create_draft(  # noqa: B008
  request: DraftRequest,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """Generate a schema proposal for a prompt without creating a job."""
  draft = await runtime.jobs.create_draft(
    owner=request.owner,
    prompt=request.prompt,
    total_records=request.total_records,
    dataset_mode=request.dataset_mode,
    inference=request.inference.to_settings(),
    schema_refreshes=request.schema_refreshes,
  )
  return encode_msgspec_response(draft)


@router.post("/jobs/confirm", status_code=status.HTTP_201_CREATED)
async def confirm_job(  # noqa: B008
  request: ConfirmJobRequest,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """Register a reviewed draft as a queued job with one shard per peer."""
  job = await runtime.jobs.confirm_job(
    ConfirmRequest(
      owner=request.owner,
      title=request.title,
      description=request.description,
      instructions=request.instructions,
      schema=request.json_schema,
      total_records=request.total_records,
      dataset_mode=request.dataset_mode,
      peers=request.peers,
      inference=request.inference.to_settings(),
      schema_generated_at=request.schema_generated_at,
      schema_duration_ms=request.schema_duration_ms,
      schema_refreshes=request.schema_refreshes,
    )
  )
  return encode_msgspec_response(job, status_code=status.HTTP_201_CREATED)


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
async def generate_job(  # noqa: B008
  request: GenerateJobRequest,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """Create a job and run its schema phase; a failed schema phase returns the failed job."""
  job = await runtime.jobs.generate_job(
    GenerateRequest(
      owner=request.owner,
      prompt=request.prompt,
      total_records=request.total_records,
      title=request.title,
      instructions=request.instructions,
      dataset_mode=request.dataset_mode,
      schema=request.json_schema,
      peers=request.peers,
      inference=request.inference.to_settings(),
    )
  )
  if job.status == "failed":
    logger.warning("Job %s failed during the schema phase: %s", job.id, job.error)
  return encode_msgspec_response(job, status_code=status.HTTP_201_CREATED)


@router.get("/jobs/{job_id}")
async def get_job(  # noqa: B008
  job_id: str,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """Return the job, its per-peer shards and the overall progress."""
  return encode_msgspec_response(await runtime.jobs.get_job(job_id))


@router.get("/jobs/{job_id}/export")
async def export_job(  # noqa: B008
  job_id: str,
  export_format: str = Query(default="json", alias="format"),  # noqa: B008
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """Download the generated records ordered by record index."""
  exported = await runtime.jobs.export_results(job_id, export_format)
  if isinstance(exported, str):
    return Response(content=exported, media_type="text/csv", headers={"Content-Disposition": f'attachment; filename="{job_id}.csv"'})
  return encode_msgspec_response(exported)


@router.get("/peers/{peer_id}/jobs")
async def list_peer_jobs(  # noqa: B008
  peer_id: str,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """List the jobs where the peer still has records to generate."""
  return encode_msgspec_response(await runtime.jobs.list_jobs_for_peer(peer_id))

from fastapi import APIRouter, Depends
from starlette.responses import Response

from datagen.api.msgspec_utils import encode_msgspec_response
from datagen.services.runtime import Runtime, get_runtime

router = APIRouter()


@router.get("")
async def read_metrics(runtime: Runtime = Depends(get_runtime)) -> Response:  # noqa: B008
  """Return the global counters."""
  return encode_msgspec_response(await runtime.jobs.read_metrics())

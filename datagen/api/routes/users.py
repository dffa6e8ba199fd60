import logging

from fastapi import APIRouter, Depends
from starlette.responses import Response

from datagen.api.models import ModelListRequest, UserSettingsUpdate
from datagen.api.msgspec_utils import encode_msgspec_response
from datagen.services.runtime import Runtime, get_runtime
from datagen.services.user_settings import public_view

router = APIRouter()
logger = logging.getLogger("datagen.api.routes.users")


@router.get("/{owner}/jobs")
async def list_owner_jobs(  # noqa: B008
  owner: str,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> Response:
  """List the owner's jobs, newest first."""
  return encode_msgspec_response(await runtime.jobs.list_jobs_for_owner(owner))


@router.get("/{owner}/settings")
async def get_user_settings(  # noqa: B008
  owner: str,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> dict:
  """Return the owner's gateway defaults without the API key."""
  return public_view(await runtime.user_settings.read(owner))


@router.put("/{owner}/settings")
async def update_user_settings(  # noqa: B008
  owner: str,
  payload: UserSettingsUpdate,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> dict:
  """Merge changes into the owner's gateway defaults."""
  saved = await runtime.user_settings.save(owner, payload.model_dump(exclude_unset=True))
  logger.info("Updated inference settings for %s", owner)
  return public_view(saved)


@router.post("/{owner}/models")
async def list_gateway_models(  # noqa: B008
  owner: str,
  payload: ModelListRequest | None = None,
  runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> dict:
  """List the models offered by the owner's gateway, or by the one given in the body."""
  request = payload or ModelListRequest()
  return {"models": await runtime.user_settings.list_models(owner, base_url=request.base_url, api_key=request.api_key)}

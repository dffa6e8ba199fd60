"""Load the write-once job details blob referenced by a job."""

from __future__ import annotations

import msgspec

from datagen.jobs.models import JobDetails, JobRecord, encode_document
from datagen.storage.interfaces import BlobStore, StorageError


class JobDetailsError(RuntimeError):
  """Details blob is missing, unreadable or belongs to another job."""


async def upload_job_details(blobs: BlobStore, details: JobDetails) -> str:
  return await blobs.upload(encode_document(details), f"{details.id}_details.json")


async def load_job_details(blobs: BlobStore, job: JobRecord) -> JobDetails:
  if not job.job_details_cid:
    raise JobDetailsError(f"Job {job.id} has no details reference.")
  try:
    payload = await blobs.download(job.job_details_cid)
  except StorageError as exc:
    raise JobDetailsError(f"Job {job.id} details could not be downloaded: {exc}") from exc
  try:
    details = msgspec.json.decode(payload, type=JobDetails)
  except (msgspec.DecodeError, msgspec.ValidationError) as exc:
    raise JobDetailsError(f"Job {job.id} details are invalid: {exc}") from exc
  if details.id != job.id:
    raise JobDetailsError(f"Details {job.job_details_cid} belong to job {details.id}, not {job.id}.")
  return details

"""Wire the stores, inference client, worker and services of one process together."""

from __future__ import annotations

import random
from dataclasses import dataclass

import httpx
from fastapi import Request

from datagen.ai.inference import InferenceClient
from datagen.config import Settings
from datagen.jobs.metrics import MetricsAggregator
from datagen.jobs.scheduler import PollScheduler, Ticker
from datagen.jobs.state_machine import JobStateMachine
from datagen.jobs.task_runner import TaskRunner
from datagen.jobs.worker import ShardWorker
from datagen.services.jobs import JobService
from datagen.services.user_settings import UserSettingsService
from datagen.storage.factory import Stores, build_stores
from datagen.storage.job_store import JobStore
from datagen.storage.task_store import TaskStore
from datagen.utils.timeutil import Clock, utc_now


@dataclass
class Runtime:
  settings: Settings
  stores: Stores
  inference: InferenceClient
  job_store: JobStore
  metrics: MetricsAggregator
  user_settings: UserSettingsService
  state_machine: JobStateMachine
  worker: ShardWorker
  scheduler: PollScheduler
  jobs: JobService
  tasks: TaskRunner

  async def aclose(self) -> None:
    await self.scheduler.stop()
    await self.inference.aclose()
    await self.stores.aclose()


def assemble_runtime(
  settings: Settings,
  stores: Stores,
  *,
  http_client: httpx.AsyncClient | None = None,
  rng: random.Random | None = None,
  clock: Clock = utc_now,
  ticker: Ticker | None = None,
) -> Runtime:
  """Build every collaborator on top of already-open stores."""
  inference = InferenceClient(settings=settings, http_client=http_client, rng=rng)
  job_store = JobStore(stores.state)
  metrics = MetricsAggregator(stores.state)
  user_settings = UserSettingsService(stores.state, inference=inference)
  state_machine = JobStateMachine(job_store=job_store, metrics=metrics, clock=clock)
  worker = ShardWorker(
    settings=settings,
    job_store=job_store,
    blobs=stores.blobs,
    inference=inference,
    state_machine=state_machine,
    metrics=metrics,
    user_settings=user_settings,
    clock=clock,
  )
  scheduler_kwargs = {"ticker": ticker} if ticker is not None else {}
  scheduler = PollScheduler(
    worker=worker,
    job_store=job_store,
    peer_id=settings.peer_id,
    poll_seconds=settings.job_poll_seconds,
    max_concurrent_jobs=settings.max_concurrent_jobs,
    **scheduler_kwargs,
  )
  jobs = JobService(
    settings=settings,
    job_store=job_store,
    blobs=stores.blobs,
    inference=inference,
    state_machine=state_machine,
    metrics=metrics,
    user_settings=user_settings,
    clock=clock,
  )
  tasks = TaskRunner(settings=settings, task_store=TaskStore(stores.state), inference=inference, metrics=metrics, user_settings=user_settings, clock=clock)
  return Runtime(
    settings=settings,
    stores=stores,
    inference=inference,
    job_store=job_store,
    metrics=metrics,
    user_settings=user_settings,
    state_machine=state_machine,
    worker=worker,
    scheduler=scheduler,
    jobs=jobs,
    tasks=tasks,
  )


async def build_runtime(settings: Settings) -> Runtime:
  return assemble_runtime(settings, await build_stores(settings))


def get_runtime(request: Request) -> Runtime:
  """FastAPI dependency returning the runtime built at startup."""
  return request.app.state.runtime

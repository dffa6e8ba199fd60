"""Timer-driven poll loop that advances at most one shard at a time per process."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from datagen.jobs.worker import ShardWorker
from datagen.storage.job_store import JobStore

logger = logging.getLogger(__name__)

Ticker = Callable[[float], Awaitable[None]]


class PollScheduler:
  """Poll for this peer's work on a fixed interval.

  Ticks that arrive while a shard is still being advanced are skipped, not queued. Stopping cancels the
  timer only; a poll already in flight runs on and the local log makes an interrupted shard resumable.
  """

  def __init__(
    self,
    *,
    worker: ShardWorker,
    job_store: JobStore,
    peer_id: str,
    poll_seconds: float,
    max_concurrent_jobs: int,
    ticker: Ticker = asyncio.sleep,
  ) -> None:
    self._worker = worker
    self._jobs = job_store
    self._peer_id = peer_id
    self._poll_seconds = poll_seconds
    self._max_concurrent_jobs = max_concurrent_jobs
    self._ticker = ticker
    self._busy = asyncio.Lock()
    self._timer: asyncio.Task[None] | None = None
    self._in_flight: set[asyncio.Task[bool]] = set()

  @property
  def running(self) -> bool:
    return self._timer is not None and not self._timer.done()

  @property
  def busy(self) -> bool:
    return self._busy.locked()

  async def poll_once(self) -> bool:
    """Advance the oldest eligible shard; return False when skipped or idle."""
    if self._busy.locked():
      logger.debug("Poll skipped; worker busy")
      return False
    async with self._busy:
      jobs = await self._jobs.list_jobs_for_peer(self._peer_id)
      for job in jobs[: self._max_concurrent_jobs]:
        shard = await self._jobs.get_shard(job.id, self._peer_id)
        if shard is None or shard.is_complete:
          continue
        await self._worker.run_job_for_peer(job.id, self._peer_id)
        return True
    return False

  async def _guarded_poll(self) -> bool:
    try:
      return await self.poll_once()
    except Exception:  # noqa: BLE001
      logger.error("Job worker poll failed", exc_info=True)
      return False

  def _spawn_poll(self) -> None:
    task = asyncio.create_task(self._guarded_poll())
    self._in_flight.add(task)
    task.add_done_callback(self._in_flight.discard)

  async def _run(self) -> None:
    while True:
      self._spawn_poll()
      await self._ticker(self._poll_seconds)

  def start(self) -> None:
    if self.running:
      return
    logger.info("Starting job worker for peer %s every %ss", self._peer_id, self._poll_seconds)
    self._timer = asyncio.create_task(self._run())

  async def stop(self, *, wait: bool = False) -> None:
    """Cancel the timer; with `wait`, also let in-flight polls finish."""
    timer, self._timer = self._timer, None
    if timer is not None:
      timer.cancel()
      try:
        await timer
      except asyncio.CancelledError:
        pass
      logger.info("Stopped job worker for peer %s", self._peer_id)
    if wait and self._in_flight:
      await asyncio.gather(*self._in_flight, return_exceptions=True)

"""
Polling loop around DispatchService.

Lifecycle:
  STOPPED -> start() -> RUNNING: one cycle immediately, then one every
  poll_interval_seconds.
  stop(): RUNNING -> STOPPING -> STOPPED. The message currently being sent is
  allowed to finish (up to shutdown_timeout_seconds); after that the loop task
  is cancelled and the in-flight claim is released by DispatchService.
start() and stop() are idempotent.
"""
from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from dispatcher.app.application.dispatch_service import DispatchService
from dispatcher.app.constants import WorkerState
from dispatcher.app.core import SERVICE_NAME
from dispatcher.app.domain.dispatch_summary import DispatchSummary


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class DispatchWorker:
    def __init__(
        self,
        service: DispatchService,
        *,
        poll_interval_seconds: float,
        shutdown_timeout_seconds: float = 30.0,
    ) -> None:
        self._service = service
        self._poll_interval_seconds = poll_interval_seconds
        self._shutdown_timeout_seconds = shutdown_timeout_seconds
        self._state = WorkerState.STOPPED
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.cycles = 0

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == WorkerState.RUNNING

    def _set_state(self, state: WorkerState) -> None:
        self._state = state

    def start(self) -> bool:
        """Start the polling loop on the running event loop. Returns False if already running."""
        if self._task is not None and not self._task.done():
            return False
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        self._set_state(WorkerState.RUNNING)
        _log("worker_started", worker_id=self._service.worker_id, poll_interval=self._poll_interval_seconds)
        return True

    async def stop(self) -> bool:
        """Stop the polling loop. Returns False if it was not running."""
        task = self._task
        if task is None or task.done():
            self._task = None
            self._set_state(WorkerState.STOPPED)
            return False

        self._set_state(WorkerState.STOPPING)
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._shutdown_timeout_seconds)
        except asyncio.TimeoutError:
            _log("worker_stop_timeout", timeout=self._shutdown_timeout_seconds)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._set_state(WorkerState.STOPPED)
        _log("worker_stopped", cycles=self.cycles)
        return True

    async def run_cycle(self) -> DispatchSummary | None:
        """Run one dispatch cycle; failures are logged, never raised."""
        self.cycles += 1
        try:
            return await self._service.dispatch_pending(self._stop_event)
        except Exception as exc:
            logger.exception("dispatch cycle failed: {}", exc)
            return None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

"""
Admission control for key recovery operations.

Key recovery attacks are CPU-bound and run in worker threads.  The
``KeyRecoveryAdmissionController`` caps how many may run at once within
one service instance and rejects overflow requests immediately with HTTP
429 (``service_busy``) instead of queuing them; queued requests would
only accumulate timeout debt.

A worker thread cannot be interrupted.  When the request that started an
attack is cancelled (by the request timeout, or a client disconnect) the
attack keeps its slot until its thread returns, so the count always
matches the threads actually busy.

Admission is decided on the event loop with no suspension point between
the check and the increment.

Usage in handlers::

    key = await admission_controller.run_in_worker_thread("mfkey64", backend.mfkey64, *arguments)
"""

import asyncio
import collections.abc
import typing

import structlog

import mfkey_function.exceptions

logger = structlog.get_logger()

ResultT = typing.TypeVar("ResultT")


class KeyRecoveryAdmissionController:
    """Counts running key recovery operations and rejects any beyond ``maximum_concurrency``."""

    def __init__(self, maximum_concurrency: int = 1) -> None:
        self._maximum_concurrency = maximum_concurrency
        self._active_operation_count = 0

    @property
    def active_operation_count(self) -> int:
        return self._active_operation_count

    @property
    def maximum_concurrency(self) -> int:
        return self._maximum_concurrency

    def _admit(self, operation: str) -> None:
        if self._active_operation_count >= self._maximum_concurrency:
            logger.warning(
                "key_recovery_rejected_busy",
                operation=operation,
                active_operation_count=self._active_operation_count,
                maximum_concurrency=self._maximum_concurrency,
            )
            raise mfkey_function.exceptions.ServiceBusyError()
        self._active_operation_count += 1

    async def run_in_worker_thread(
        self,
        operation: str,
        function: collections.abc.Callable[..., ResultT],
        *arguments: typing.Any,
    ) -> ResultT:
        """
        Run ``function(*arguments)`` in a worker thread under one slot.

        The slot is released when the thread returns, not when the caller
        stops waiting for it.

        Raises:
            mfkey_function.exceptions.ServiceBusyError:
                When the maximum concurrency limit has been reached.
        """
        self._admit(operation)
        worker = asyncio.ensure_future(asyncio.to_thread(function, *arguments))
        worker.add_done_callback(self._release_finished_worker)
        return await asyncio.shield(worker)

    def _release_finished_worker(self, worker: asyncio.Future) -> None:
        self._active_operation_count -= 1
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug(
                "key_recovery_worker_failed",
                error_type=type(worker.exception()).__name__,
            )

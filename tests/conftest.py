"""Shared fixtures: request contexts, a recording key recovery backend and
admission slot helpers."""

import asyncio
import contextlib
import threading

import pytest

import mfkey_function.admission_control
import mfkey_function.context

RECOVERED_TEST_KEY = 0xA0A1A2A3A4A5


class RecordingKeyRecoveryBackend:
    """Key recovery backend stub that records calls and returns a fixed key."""

    def __init__(self, key: int | None = RECOVERED_TEST_KEY) -> None:
        self.key = key
        self.calls: list[tuple[str, tuple[int, ...]]] = []

    def mfkey32(self, *arguments: int) -> int | None:
        self.calls.append(("mfkey32", arguments))
        return self.key

    def mfkey32v2(self, *arguments: int) -> int | None:
        self.calls.append(("mfkey32v2", arguments))
        return self.key

    def mfkey64(self, *arguments: int) -> int | None:
        self.calls.append(("mfkey64", arguments))
        return self.key


@pytest.fixture
def recording_backend():
    return RecordingKeyRecoveryBackend()


@pytest.fixture
def admission_controller():
    return mfkey_function.admission_control.KeyRecoveryAdmissionController(maximum_concurrency=100)


@pytest.fixture
def occupy_admission_slots():
    """
    Return an async context manager that keeps ``count`` worker threads
    running under the controller until the block exits.
    """

    @contextlib.asynccontextmanager
    async def _occupy_admission_slots(controller, count: int = 1):
        release_workers = threading.Event()
        workers = [
            asyncio.create_task(controller.run_in_worker_thread("occupying", release_workers.wait, 5.0))
            for _ in range(count)
        ]
        await asyncio.sleep(0)
        try:
            yield
        finally:
            release_workers.set()
            await asyncio.gather(*workers)

    return _occupy_admission_slots


@pytest.fixture
def build_context():
    """Return a factory for ``RequestContext`` objects."""

    def _build_context(
        method: str = "GET",
        path: str = "/",
        body=None,
        headers: dict[str, str] | None = None,
    ) -> mfkey_function.context.RequestContext:
        return mfkey_function.context.RequestContext(
            request=mfkey_function.context.IncomingRequest(
                method=method,
                path=path,
                headers={name.lower(): value for name, value in (headers or {}).items()},
                body=body,
            ),
            correlation_id="test-correlation-id",
        )

    return _build_context

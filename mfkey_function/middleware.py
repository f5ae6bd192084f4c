"""
ASGI middleware wrapped around the FastAPI application.

These layers sit outside the request pipeline and deal with concerns
that must hold even when the pipeline never runs or never finishes:

- **CorrelationIdMiddleware** (outermost): assigns a UUID v4 correlation
  ID to every request, exposes it on ``scope["state"]``, the
  ``X-Correlation-ID`` response header and the structlog context, logs
  request start and completion, tracks in-flight requests, and answers
  any exception that escapes the application with a JSON HTTP 500.

- **RequestTimeoutMiddleware**: bounds each request with
  ``asyncio.wait_for``.  On timeout the request task, and with it every
  suspended pipeline handler, is cancelled and the client receives HTTP
  504 (``request_timeout``).

- **RequestPayloadSizeLimitMiddleware**: rejects a declared
  ``Content-Length`` above ``maximum_request_payload_bytes`` with HTTP
  413 (``payload_too_large``).  A body without a declared length is cut
  off at the limit and the limit is recorded under
  ``scope["state"][TRUNCATED_PAYLOAD_LIMIT_STATE_KEY]``; the transport
  adapter answers such requests with the same 413.

Registration order (last registered = outermost)::

    Request → CorrelationId → RequestTimeout → PayloadSizeLimit → App
"""

import asyncio
import json
import threading
import time
import uuid

import starlette.types
import structlog
import structlog.contextvars

import mfkey_function.error_handling

logger = structlog.get_logger()

TRUNCATED_PAYLOAD_LIMIT_STATE_KEY = "truncated_payload_limit_bytes"


class InFlightRequestCounter:
    """
    Thread-safe count of HTTP requests currently being processed.

    Read during shutdown so that the ``graceful_shutdown_initiated`` log
    event reports how many requests were still running.
    """

    def __init__(self) -> None:
        self._count: int = 0
        self._lock = threading.Lock()

    def increment(self) -> None:
        with self._lock:
            self._count += 1

    def decrement(self) -> None:
        with self._lock:
            self._count -= 1

    @property
    def count(self) -> int:
        return self._count


def extract_content_length_from_headers(
    headers: list[tuple[bytes, bytes]],
) -> int | None:
    """
    Return the integer value of the Content-Length header, or ``None``
    when it is absent or not an integer.
    """
    for header_name, header_value in headers:
        if header_name.lower() == b"content-length":
            try:
                return int(header_value)
            except (ValueError, TypeError):
                return None
    return None


def describe_payload_limit(maximum_request_payload_bytes: int) -> str:
    return f"The request payload exceeds the maximum allowed size of {maximum_request_payload_bytes} bytes."


def _correlation_id_from_scope(scope: starlette.types.Scope) -> str:
    return scope.get("state", {}).get("correlation_id", "unknown")


async def _send_json_error(
    send: starlette.types.Send,
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
    extra_headers: list[tuple[bytes, bytes]] | None = None,
) -> int:
    """Send a complete JSON error response and return the body size."""
    response_body = json.dumps(
        mfkey_function.error_handling.build_error_payload(code, message, correlation_id),
    ).encode()

    await send(
        {
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(response_body)).encode()),
                *(extra_headers or []),
            ],
        }
    )
    await send(
        {
            "type": "http.response.body",
            "body": response_body,
        }
    )
    return len(response_body)


class CorrelationIdMiddleware:
    """
    Assign a unique correlation ID (UUID v4) to every incoming request.

    Implemented as a pure ASGI middleware rather than
    ``BaseHTTPMiddleware`` so that unhandled exceptions are caught here
    directly instead of arriving wrapped in an ``ExceptionGroup``.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        in_flight_request_counter: InFlightRequestCounter | None = None,
    ) -> None:
        self.app = app
        self._in_flight_request_counter = in_flight_request_counter

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = str(uuid.uuid4())
        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.monotonic()
        response_status = 0
        response_payload_bytes = 0

        if "state" not in scope:
            scope["state"] = {}
        scope["state"]["correlation_id"] = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger.info(
            "http_request_received",
            method=method,
            path=path,
            request_payload_bytes=extract_content_length_from_headers(scope.get("headers", [])),
        )

        if self._in_flight_request_counter is not None:
            self._in_flight_request_counter.increment()

        async def send_with_correlation_id_and_size_tracking(
            message: starlette.types.Message,
        ) -> None:
            nonlocal response_status, response_payload_bytes
            if message["type"] == "http.response.start":
                response_status = message.get("status", 0)
                headers = list(message.get("headers", []))
                headers.append((b"x-correlation-id", correlation_id.encode()))
                message["headers"] = headers
            elif message["type"] == "http.response.body":
                response_payload_bytes += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_with_correlation_id_and_size_tracking)
        except Exception:
            response_status = 500
            logger.exception("unexpected_exception")
            response_payload_bytes = await _send_json_error(
                send,
                500,
                mfkey_function.error_handling.INTERNAL_SERVER_ERROR_CODE,
                mfkey_function.error_handling.INTERNAL_SERVER_ERROR_MESSAGE,
                correlation_id,
                extra_headers=[(b"x-correlation-id", correlation_id.encode())],
            )
        finally:
            if self._in_flight_request_counter is not None:
                self._in_flight_request_counter.decrement()

            logger.info(
                "http_request_completed",
                method=method,
                path=path,
                status=response_status,
                duration_milliseconds=round((time.monotonic() - start_time) * 1000, 1),
                response_payload_bytes=response_payload_bytes,
            )


class RequestTimeoutMiddleware:
    """
    Enforce an end-to-end timeout on every HTTP request.

    When the timeout expires before the application has started its
    response, the client receives HTTP 504 (``request_timeout``).  Once
    response headers have been sent the status can no longer change; the
    timeout is then only logged.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        request_timeout_seconds: float = 60.0,
    ) -> None:
        self.app = app
        self._request_timeout_seconds = request_timeout_seconds

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_headers_already_sent = False

        async def send_with_header_tracking(
            message: starlette.types.Message,
        ) -> None:
            nonlocal response_headers_already_sent
            if message["type"] == "http.response.start":
                response_headers_already_sent = True
            await send(message)

        try:
            await asyncio.wait_for(
                self.app(scope, receive, send_with_header_tracking),
                timeout=self._request_timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                "request_timeout_exceeded",
                timeout_seconds=self._request_timeout_seconds,
                path=scope.get("path", ""),
                method=scope.get("method", ""),
            )

            if response_headers_already_sent:
                logger.warning(
                    "request_timeout_after_headers_sent",
                    path=scope.get("path", ""),
                )
                return

            await _send_json_error(
                send,
                504,
                "request_timeout",
                "The request exceeded the maximum allowed processing time and was aborted.",
                _correlation_id_from_scope(scope),
            )


class RequestPayloadSizeLimitMiddleware:
    """
    Reject HTTP requests whose body exceeds the configured maximum size.

    A declared ``Content-Length`` above the limit is rejected before any
    body bytes are read.  Otherwise ``receive`` is wrapped to count the
    bytes actually received.  Once the limit is crossed the application
    sees an empty, final body chunk and the limit is recorded on the
    request state, where the endpoint that reads the body must check it.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        maximum_request_payload_bytes: int = 1_048_576,
    ) -> None:
        self.app = app
        self._maximum_request_payload_bytes = maximum_request_payload_bytes

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared_content_length = extract_content_length_from_headers(scope.get("headers", []))

        if declared_content_length is not None and declared_content_length > self._maximum_request_payload_bytes:
            logger.warning(
                "http_payload_too_large",
                declared_content_length=declared_content_length,
                maximum_allowed_bytes=self._maximum_request_payload_bytes,
            )
            await self._send_payload_too_large_response(scope, send)
            return

        received_body_bytes = 0

        async def receive_within_limit() -> starlette.types.Message:
            nonlocal received_body_bytes

            message = await receive()
            if message["type"] != "http.request":
                return message

            received_body_bytes += len(message.get("body", b""))
            if received_body_bytes <= self._maximum_request_payload_bytes:
                return message

            logger.warning(
                "http_payload_truncated",
                received_bytes=received_body_bytes,
                maximum_allowed_bytes=self._maximum_request_payload_bytes,
            )
            scope.setdefault("state", {})[TRUNCATED_PAYLOAD_LIMIT_STATE_KEY] = self._maximum_request_payload_bytes
            return {"type": "http.request", "body": b"", "more_body": False}

        await self.app(scope, receive_within_limit, send)

    async def _send_payload_too_large_response(
        self,
        scope: starlette.types.Scope,
        send: starlette.types.Send,
    ) -> None:
        await _send_json_error(
            send,
            413,
            "payload_too_large",
            describe_payload_limit(self._maximum_request_payload_bytes),
            _correlation_id_from_scope(scope),
        )

"""
Request-scoped context shared by every handler of one pipeline invocation.

The composition engine treats the context as an opaque payload.  The
HTTP service passes a ``RequestContext``, built once per inbound request
by the transport adapter (``mfkey_function.transport``), that carries a
read-only view of the request and a mutable response which handlers
write into.  Handlers mutate these objects; they never replace them.
"""

import dataclasses
import json
import typing

import mfkey_function.exceptions


@dataclasses.dataclass(frozen=True)
class IncomingRequest:
    """
    The parts of an HTTP request that handlers inspect.

    Attributes:
        method: Upper-case HTTP method.
        path: URL path without the query string.
        headers: Header mapping with lower-case names.
        body: The decoded JSON body, or ``None`` when the request has no
            body or the body is not valid JSON.
    """

    method: str
    path: str
    headers: dict[str, str] = dataclasses.field(default_factory=dict)
    body: typing.Any = None

    def get_header(self, name: str) -> str | None:
        """Return a header value by case-insensitive name."""
        return self.headers.get(name.lower())


@dataclasses.dataclass
class OutgoingResponse:
    """
    The response under construction.

    Headers may be set at any point before or after the response is
    sent; the transport adapter reads the final state once the pipeline
    has settled.  The body may only be sent once.
    """

    status_code: int = 200
    headers: dict[str, str] = dataclasses.field(default_factory=dict)
    body: bytes = b""
    media_type: str | None = None
    is_sent: bool = False

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def send_text(self, status_code: int, text: str) -> None:
        self._send(status_code, text.encode("utf-8"), "text/plain; charset=utf-8")

    def send_json(self, payload: typing.Any, status_code: int = 200) -> None:
        self._send(status_code, json.dumps(payload).encode("utf-8"), "application/json")

    def send_empty(self, status_code: int) -> None:
        self._send(status_code, b"", None)

    def _send(self, status_code: int, body: bytes, media_type: str | None) -> None:
        if self.is_sent:
            raise mfkey_function.exceptions.ResponseAlreadySentError(
                f"A {self.status_code} response has already been sent.",
            )
        self.status_code = status_code
        self.body = body
        self.media_type = media_type
        self.is_sent = True


@dataclasses.dataclass
class RequestContext:
    """
    The context object handed to every handler of the HTTP pipeline.

    Attributes:
        request: The inbound request.
        response: The response handlers write into.
        correlation_id: The per-request identifier assigned by
            ``CorrelationIdMiddleware``.
        state: Free-form per-request values handlers may share.
    """

    request: IncomingRequest
    response: OutgoingResponse = dataclasses.field(default_factory=OutgoingResponse)
    correlation_id: str = "unknown"
    state: dict[str, typing.Any] = dataclasses.field(default_factory=dict)

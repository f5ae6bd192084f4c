"""
Custom exception classes for the MIFARE key recovery function.

Exception hierarchy
-------------------
::

    Exception (Python built-in)
    ├── TypeError
    │   └── PipelineConfigurationError          (composition time)
    ├── RuntimeError
    │   ├── PipelineProtocolError               (dispatch time)
    │   │   ├── NextCalledMultipleTimesError
    │   │   └── NextNotAwaitedError
    │   └── ResponseAlreadySentError
    ├── KeyRecoveryBackendConfigurationError    (startup)
    └── ServiceError (base class for all handler-raised HTTP errors)
        ├── InvalidRequestParameterError         → HTTP 400
        ├── EndpointNotFoundError                → HTTP 404
        ├── KeyNotRecoveredError                 → HTTP 422
        ├── ServiceBusyError                     → HTTP 429
        └── KeyRecoveryBackendUnavailableError   → HTTP 503

The pipeline errors describe authoring bugs in handlers and are never
mapped to a client-facing status of their own: whoever observes them at
the boundary reports an HTTP 500.  ``ServiceError`` subclasses carry
their own ``status_code`` and ``error_code`` so that the boundary can
build the error response without type-checking each subclass.
"""


class PipelineConfigurationError(TypeError):
    """
    Raised by ``compose`` when the handler collection is not an ordered
    sequence or contains an element that cannot be called.
    """


class PipelineProtocolError(RuntimeError):
    """
    Base class for misuse of the ``next`` continuation detected while a
    composed pipeline is dispatching.

    Attributes:
        position: Index (within the effective chain of the invocation) of
            the handler that misused its continuation.
    """

    def __init__(self, position: int, message: str) -> None:
        self.position = position
        super().__init__(message)


class NextCalledMultipleTimesError(PipelineProtocolError):
    """
    Raised when a handler calls its ``next`` continuation more than once
    during a single invocation.
    """

    def __init__(self, position: int) -> None:
        self.slot_position = position + 1
        super().__init__(
            position,
            f"next() called multiple times by middleware[{position}]",
        )


class NextNotAwaitedError(PipelineProtocolError):
    """
    Raised when a handler settles while the continuation it started is
    still pending, i.e. it called ``next()`` without awaiting the result.
    """

    def __init__(self, position: int) -> None:
        super().__init__(
            position,
            f"next() in middleware[{position}] should be awaited",
        )


class ResponseAlreadySentError(RuntimeError):
    """Raised when a handler writes a response that has already been sent."""


class KeyRecoveryBackendConfigurationError(Exception):
    """
    Raised at startup when the configured key recovery backend import
    path is malformed or cannot be imported.
    """


class ServiceError(Exception):
    """
    Base exception for all errors a handler reports to the HTTP client.

    Attributes:
        detail: A human-readable description of the error, safe for
            inclusion in API responses.
        status_code: The HTTP status code the boundary responds with.
        error_code: A machine-readable ``snake_case`` error code.
    """

    default_detail: str = "A service error occurred."
    status_code: int = 500
    error_code: str = "service_error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidRequestParameterError(ServiceError):
    """
    Raised when a key recovery request field is missing or is not a
    string of exactly eight hexadecimal digits.
    """

    default_detail = "The request contains an invalid parameter."
    status_code = 400
    error_code = "invalid_parameter"


class EndpointNotFoundError(ServiceError):
    """Raised by the terminal handler when no earlier handler responded."""

    default_detail = "Not Found"
    status_code = 404
    error_code = "not_found"


class KeyNotRecoveredError(ServiceError):
    """
    Raised when the key recovery backend finished without finding a key
    consistent with the supplied nonces.
    """

    default_detail = "No key candidate matched the supplied authentication nonces."
    status_code = 422
    error_code = "key_not_recovered"


class ServiceBusyError(ServiceError):
    """
    Raised when the key recovery admission control concurrency limit is
    fully occupied.  Requests are rejected rather than queued.
    """

    default_detail = (
        "The key recovery service is at maximum concurrency. Please retry after the current operation completes."
    )
    status_code = 429
    error_code = "service_busy"


class KeyRecoveryBackendUnavailableError(ServiceError):
    """
    Raised when a key recovery endpoint is called but no backend was
    configured (or it failed to load) at startup.
    """

    default_detail = "The key recovery backend is unavailable."
    status_code = 503
    error_code = "key_recovery_backend_unavailable"

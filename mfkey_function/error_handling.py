"""
Conversion of failures into client-facing error responses.

Both places that observe a failure outcome use this module: the error
boundary handler at the head of the pipeline, and the transport adapter
for anything that escapes the pipeline itself.  Every error response has
the same JSON body::

    {"error": {"code": "...", "message": "...", "correlation_id": "..."}}

``ServiceError`` subclasses carry their own status code, error code and
client-safe detail.  Any other exception (including pipeline protocol
errors, which indicate a bug in a handler) becomes a generic HTTP 500 so
that internal messages never reach the client.
"""

import fastapi.responses

import mfkey_function.context
import mfkey_function.exceptions

INTERNAL_SERVER_ERROR_CODE = "internal_server_error"
INTERNAL_SERVER_ERROR_MESSAGE = "An unexpected internal error occurred."


def describe_error(error: Exception) -> tuple[int, str, str]:
    """
    Return ``(status_code, error_code, message)`` for a failure.
    """
    if isinstance(error, mfkey_function.exceptions.ServiceError):
        return error.status_code, error.error_code, error.detail
    return 500, INTERNAL_SERVER_ERROR_CODE, INTERNAL_SERVER_ERROR_MESSAGE


def build_error_payload(code: str, message: str, correlation_id: str) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "correlation_id": correlation_id,
        }
    }


def write_error_response(
    response: mfkey_function.context.OutgoingResponse,
    error: Exception,
    correlation_id: str,
) -> None:
    """
    Write the error response for ``error`` into a pipeline response.

    A response that was already sent by a handler before it failed is
    discarded: the failure determines what the client receives.
    """
    status_code, code, message = describe_error(error)
    response.is_sent = False
    response.send_json(
        build_error_payload(code, message, correlation_id),
        status_code=status_code,
    )


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
) -> fastapi.responses.JSONResponse:
    """Build a Starlette JSON error response with the standard body."""
    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content=build_error_payload(code, message, correlation_id),
    )

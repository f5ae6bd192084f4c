"""
Transport adapter between FastAPI and the composed request pipeline.

``create_pipeline_endpoint`` returns the endpoint the server factory
mounts on a catch-all route.  For every request it:

1. builds a fresh ``RequestContext`` (the JSON body is decoded here; a
   missing or unparsable body becomes ``None`` and is left for the
   handlers to reject), or answers HTTP 413 without running the
   pipeline when the size-limit middleware cut the body short,
2. invokes the pipeline exactly once,
3. turns the context's final response into a Starlette ``Response``.

A failure that escapes the pipeline (the error boundary normally catches
everything, but protocol errors in the boundary itself cannot be caught
by it) is logged and answered with the standard error body.  A pipeline
that settles without any handler having sent a response is a bug in the
chain and is answered with HTTP 500.
"""

import collections.abc
import json
import typing

import fastapi
import fastapi.responses
import structlog

import mfkey_function.composition
import mfkey_function.context
import mfkey_function.error_handling
import mfkey_function.logging_config
import mfkey_function.middleware

logger = structlog.get_logger()


async def build_incoming_request(request: fastapi.Request) -> mfkey_function.context.IncomingRequest:
    """Read the parts of a Starlette request that pipeline handlers use."""
    raw_body = await request.body()
    body: typing.Any = None
    if raw_body:
        try:
            body = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.info("request_body_not_json", path=request.url.path)

    return mfkey_function.context.IncomingRequest(
        method=request.method.upper(),
        path=request.url.path,
        headers={name.lower(): value for name, value in request.headers.items()},
        body=body,
    )


def build_transport_response(
    response: mfkey_function.context.OutgoingResponse,
) -> fastapi.responses.Response:
    """Convert the pipeline's response into a Starlette response."""
    return fastapi.responses.Response(
        content=response.body,
        status_code=response.status_code,
        headers=dict(response.headers),
        media_type=response.media_type,
    )


def create_pipeline_endpoint(
    pipeline: mfkey_function.composition.ComposedPipeline[mfkey_function.context.RequestContext, typing.Any],
) -> collections.abc.Callable[[fastapi.Request], collections.abc.Awaitable[fastapi.responses.Response]]:
    """Create the FastAPI endpoint that feeds every request through ``pipeline``."""

    async def handle_request_with_pipeline(request: fastapi.Request) -> fastapi.responses.Response:
        context = mfkey_function.context.RequestContext(
            request=await build_incoming_request(request),
            correlation_id=getattr(request.state, "correlation_id", "unknown"),
        )

        truncated_payload_limit = getattr(
            request.state,
            mfkey_function.middleware.TRUNCATED_PAYLOAD_LIMIT_STATE_KEY,
            None,
        )
        if truncated_payload_limit is not None:
            return mfkey_function.error_handling.build_error_response(
                status_code=413,
                code="payload_too_large",
                message=mfkey_function.middleware.describe_payload_limit(truncated_payload_limit),
                correlation_id=context.correlation_id,
            )

        try:
            await pipeline(context)
        except Exception as error:
            logger.error(
                "pipeline_invocation_failed",
                method=context.request.method,
                path=context.request.path,
                error=mfkey_function.logging_config.error_to_plain_object(error),
            )
            mfkey_function.error_handling.write_error_response(
                context.response,
                error,
                context.correlation_id,
            )

        if not context.response.is_sent:
            logger.error(
                "pipeline_completed_without_response",
                method=context.request.method,
                path=context.request.path,
            )
            return mfkey_function.error_handling.build_error_response(
                status_code=500,
                code="pipeline_completed_without_response",
                message="The request pipeline completed without producing a response.",
                correlation_id=context.correlation_id,
            )

        return build_transport_response(context.response)

    return handle_request_with_pipeline

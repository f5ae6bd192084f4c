"""
Error boundary: the first handler of the HTTP pipeline.

Delegates to the rest of the chain and converts any ``Exception`` it
propagates into an error response on the context, so that one failing
handler produces a well-formed reply instead of an unhandled failure.
``asyncio.CancelledError`` is a ``BaseException`` and is not caught here;
cancellation keeps unwinding to the caller.
"""

import typing

import structlog

import mfkey_function.composition
import mfkey_function.context
import mfkey_function.error_handling
import mfkey_function.logging_config

logger = structlog.get_logger()


async def handle_pipeline_errors(
    context: mfkey_function.context.RequestContext,
    next: mfkey_function.composition.Next[typing.Any],
) -> typing.Any:
    try:
        return await next()
    except Exception as error:
        logger.error(
            "pipeline_request_failed",
            method=context.request.method,
            path=context.request.path,
            error=mfkey_function.logging_config.error_to_plain_object(error),
        )
        mfkey_function.error_handling.write_error_response(
            context.response,
            error,
            context.correlation_id,
        )
        return None

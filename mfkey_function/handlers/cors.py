"""
Cross-origin resource sharing policy handler.

Every response echoes the request ``Origin`` (``*`` when absent) and
allows credentials.  ``OPTIONS`` requests are treated as preflight
requests: the handler adds the allowed headers, methods and max age and
ends the chain with an empty HTTP 204, so no later handler sees them.
"""

import collections.abc
import typing

import mfkey_function.composition
import mfkey_function.context

DEFAULT_ALLOWED_HEADERS = ("Authorization", "Content-Type")
DEFAULT_ALLOWED_METHODS = ("GET", "HEAD", "PUT", "PATCH", "POST", "DELETE")
DEFAULT_MAX_AGE_SECONDS = 3600


class CorsPolicyHandler:
    """Pipeline handler applying the CORS response headers."""

    def __init__(
        self,
        allowed_headers: collections.abc.Sequence[str] = DEFAULT_ALLOWED_HEADERS,
        allowed_methods: collections.abc.Sequence[str] = DEFAULT_ALLOWED_METHODS,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    ) -> None:
        self._allowed_headers = ",".join(allowed_headers)
        self._allowed_methods = ",".join(method.upper() for method in allowed_methods)
        self._max_age_seconds = max_age_seconds

    async def __call__(
        self,
        context: mfkey_function.context.RequestContext,
        next: mfkey_function.composition.Next[typing.Any],
    ) -> typing.Any:
        request, response = context.request, context.response

        response.set_header("Access-Control-Allow-Origin", request.get_header("Origin") or "*")
        response.set_header("Access-Control-Allow-Credentials", "true")

        if request.method != "OPTIONS":
            return await next()

        response.set_header("Access-Control-Allow-Headers", self._allowed_headers)
        response.set_header("Access-Control-Allow-Methods", self._allowed_methods)
        response.set_header("Access-Control-Max-Age", str(self._max_age_seconds))
        response.set_header("Vary", "Origin")
        response.send_empty(204)
        return None

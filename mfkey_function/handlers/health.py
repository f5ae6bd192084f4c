"""
Liveness probe handler.

``GET /health`` (and ``HEAD``) answers ``{"status": "healthy"}`` whenever
the process is serving requests.  It does not check the key recovery
backend.  Cache suppression headers keep proxies from serving a stale
answer to orchestrators.
"""

import typing

import mfkey_function.composition
import mfkey_function.context

HEALTH_CHECK_PATH = "/health"

_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache",
    "Pragma": "no-cache",
}


async def respond_to_health_check(
    context: mfkey_function.context.RequestContext,
    next: mfkey_function.composition.Next[typing.Any],
) -> typing.Any:
    request = context.request
    if request.method not in ("GET", "HEAD") or request.path != HEALTH_CHECK_PATH:
        return await next()

    for header_name, header_value in _INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS.items():
        context.response.set_header(header_name, header_value)
    context.response.send_json({"status": "healthy"})
    return None

"""Terminal handler: any request no earlier handler answered is a 404."""

import typing

import mfkey_function.composition
import mfkey_function.context
import mfkey_function.exceptions


async def respond_not_found(
    context: mfkey_function.context.RequestContext,
    next: mfkey_function.composition.Next[typing.Any],
) -> typing.NoReturn:
    raise mfkey_function.exceptions.EndpointNotFoundError()

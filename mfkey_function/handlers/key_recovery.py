"""
Key recovery endpoint handlers.

One ``KeyRecoveryHandler`` instance serves each attack endpoint:

    POST /mfkey32    →  backend.mfkey32(uid, nt0, nr0, ar0, nr1, ar1)
    POST /mfkey32v2  →  backend.mfkey32v2(uid, nt0, nr0, ar0, nt1, nr1, ar1)
    POST /mfkey64    →  backend.mfkey64(uid, nt, nr, ar, at)

A request for another method or path is passed on with ``next``.  A
matching request is answered here and ends the chain:

1. The JSON body is validated against the endpoint's request model; the
   first invalid field (in argument order) is reported as HTTP 400
   ``invalid <field>``.
2. The backend call runs in a worker thread under the admission
   controller, so the event loop keeps serving other requests.
3. The recovered key is returned as ``{"key": "<12 hex digits>"}``.
"""

import typing

import pydantic
import structlog

import mfkey_function.admission_control
import mfkey_function.composition
import mfkey_function.context
import mfkey_function.exceptions
import mfkey_function.key_recovery
import mfkey_function.models

logger = structlog.get_logger()


def parse_key_recovery_request(
    request_model: type[mfkey_function.models.KeyRecoveryRequest],
    body: typing.Any,
) -> mfkey_function.models.KeyRecoveryRequest:
    """
    Validate a request body against ``request_model``.

    A body that is not a JSON object is validated as an empty object, so
    the first declared field is reported as invalid.

    Raises:
        mfkey_function.exceptions.InvalidRequestParameterError:
            Naming the first field that is missing or malformed.
    """
    try:
        return request_model.model_validate(body if isinstance(body, dict) else {})
    except pydantic.ValidationError as validation_error:
        first_error_location = validation_error.errors()[0]["loc"]
        field_name = first_error_location[0] if first_error_location else next(iter(request_model.model_fields))
        raise mfkey_function.exceptions.InvalidRequestParameterError(
            detail=f"invalid {field_name}",
        ) from validation_error


class KeyRecoveryHandler:
    """Pipeline handler for one key recovery endpoint."""

    def __init__(
        self,
        path: str,
        request_model: type[mfkey_function.models.KeyRecoveryRequest],
        backend_method_name: str,
        backend: mfkey_function.key_recovery.KeyRecoveryBackend | None,
        admission_controller: mfkey_function.admission_control.KeyRecoveryAdmissionController,
    ) -> None:
        self.path = path
        self._request_model = request_model
        self._backend_method_name = backend_method_name
        self._backend = backend
        self._admission_controller = admission_controller

    def __repr__(self) -> str:
        return f"KeyRecoveryHandler(path={self.path!r})"

    async def __call__(
        self,
        context: mfkey_function.context.RequestContext,
        next: mfkey_function.composition.Next[typing.Any],
    ) -> typing.Any:
        request = context.request
        if request.method != "POST" or request.path != self.path:
            return await next()

        arguments = parse_key_recovery_request(self._request_model, request.body).as_arguments()

        if self._backend is None:
            raise mfkey_function.exceptions.KeyRecoveryBackendUnavailableError(
                detail=(
                    "The key recovery backend is not available. "
                    "No backend was configured or it failed to load during startup."
                ),
            )

        recovery_function = getattr(self._backend, self._backend_method_name)

        logger.info(
            "key_recovery_started",
            attack=self._backend_method_name,
            uid=f"{arguments[0]:08X}",
        )

        recovered_key = await self._admission_controller.run_in_worker_thread(
            self._backend_method_name,
            recovery_function,
            *arguments,
        )

        if recovered_key is None:
            logger.info("key_recovery_exhausted", attack=self._backend_method_name)
            raise mfkey_function.exceptions.KeyNotRecoveredError()

        logger.info("key_recovery_completed", attack=self._backend_method_name)
        response_body = mfkey_function.models.KeyRecoveryResponse(
            key=mfkey_function.key_recovery.format_recovered_key(recovered_key),
        )
        context.response.send_json(response_body.model_dump())
        return None


def create_key_recovery_handlers(
    backend: mfkey_function.key_recovery.KeyRecoveryBackend | None,
    admission_controller: mfkey_function.admission_control.KeyRecoveryAdmissionController,
) -> list[KeyRecoveryHandler]:
    """Create the handlers for ``/mfkey32``, ``/mfkey32v2`` and ``/mfkey64``, in that order."""
    return [
        KeyRecoveryHandler("/mfkey32", mfkey_function.models.Mfkey32Request, "mfkey32", backend, admission_controller),
        KeyRecoveryHandler(
            "/mfkey32v2", mfkey_function.models.Mfkey32v2Request, "mfkey32v2", backend, admission_controller
        ),
        KeyRecoveryHandler("/mfkey64", mfkey_function.models.Mfkey64Request, "mfkey64", backend, admission_controller),
    ]

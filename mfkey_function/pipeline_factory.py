"""
Assembly of the HTTP request pipeline.

The handler order is fixed here and composed once per application:

    error boundary → CORS policy → /health → /mfkey32 → /mfkey32v2
                   → /mfkey64 → not found

The error boundary comes first so that it observes failures raised
anywhere downstream.  CORS comes second so that every response,
including error responses, carries the CORS headers, and so that
preflight requests end there.  The not-found handler comes last and
answers whatever nobody else did.
"""

import collections.abc

import mfkey_function.admission_control
import mfkey_function.composition
import mfkey_function.context
import mfkey_function.handlers.cors
import mfkey_function.handlers.error_boundary
import mfkey_function.handlers.health
import mfkey_function.handlers.key_recovery
import mfkey_function.handlers.not_found
import mfkey_function.key_recovery

RequestPipeline = mfkey_function.composition.ComposedPipeline[mfkey_function.context.RequestContext, None]


def create_request_pipeline(
    key_recovery_backend: mfkey_function.key_recovery.KeyRecoveryBackend | None,
    admission_controller: mfkey_function.admission_control.KeyRecoveryAdmissionController,
    cors_allowed_headers: collections.abc.Sequence[str] = mfkey_function.handlers.cors.DEFAULT_ALLOWED_HEADERS,
    cors_allowed_methods: collections.abc.Sequence[str] = mfkey_function.handlers.cors.DEFAULT_ALLOWED_METHODS,
    cors_max_age_seconds: int = mfkey_function.handlers.cors.DEFAULT_MAX_AGE_SECONDS,
) -> RequestPipeline:
    """Compose the service's handler chain."""
    return mfkey_function.composition.compose(
        [
            mfkey_function.handlers.error_boundary.handle_pipeline_errors,
            mfkey_function.handlers.cors.CorsPolicyHandler(
                allowed_headers=cors_allowed_headers,
                allowed_methods=cors_allowed_methods,
                max_age_seconds=cors_max_age_seconds,
            ),
            mfkey_function.handlers.health.respond_to_health_check,
            *mfkey_function.handlers.key_recovery.create_key_recovery_handlers(
                key_recovery_backend,
                admission_controller,
            ),
            mfkey_function.handlers.not_found.respond_not_found,
        ]
    )

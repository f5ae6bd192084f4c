"""
FastAPI application factory.

``create_application`` builds the ASGI application that hosts the
request pipeline: configuration and logging, the key recovery backend,
the composed handler chain, the ASGI middleware stack and a single
catch-all route that hands every request to the transport adapter.

Routing is done by the pipeline's own handlers, so FastAPI's generated
documentation routes are disabled; every path, including ``/docs``,
reaches the pipeline.
"""

import collections.abc
import contextlib

import fastapi
import structlog

import configuration
import mfkey_function.admission_control
import mfkey_function.exceptions
import mfkey_function.key_recovery
import mfkey_function.logging_config
import mfkey_function.middleware
import mfkey_function.pipeline_factory
import mfkey_function.transport

logger = structlog.get_logger()

PIPELINE_ROUTE_PATH = "/{request_path:path}"
PIPELINE_ROUTE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _load_key_recovery_backend_or_degrade(
    import_path: str,
) -> mfkey_function.key_recovery.KeyRecoveryBackend | None:
    """
    Load the configured backend.  A backend that fails to load leaves the
    service running in a degraded state where the key recovery endpoints
    answer HTTP 503, while the failure is logged at CRITICAL level.
    """
    try:
        backend = mfkey_function.key_recovery.load_key_recovery_backend(import_path)
    except mfkey_function.exceptions.KeyRecoveryBackendConfigurationError as backend_loading_error:
        logger.critical(
            "key_recovery_backend_loading_failed",
            backend=import_path,
            error=str(backend_loading_error),
        )
        return None

    if backend is None:
        logger.warning("key_recovery_backend_not_configured")
    return backend


def create_application() -> fastapi.FastAPI:
    """
    Create and fully configure the FastAPI application.

    This function:
      1. Reads configuration from environment variables.
      2. Configures structured logging.
      3. Loads the key recovery backend and composes the request pipeline.
      4. Adds the ASGI middleware stack.
      5. Mounts the catch-all route that invokes the pipeline.
    """
    application_configuration = configuration.ApplicationConfiguration()
    mfkey_function.logging_config.configure_logging(
        log_level=application_configuration.log_level,
    )

    in_flight_request_counter = mfkey_function.middleware.InFlightRequestCounter()

    key_recovery_backend = _load_key_recovery_backend_or_degrade(
        application_configuration.key_recovery_backend,
    )
    key_recovery_admission_controller = mfkey_function.admission_control.KeyRecoveryAdmissionController(
        maximum_concurrency=application_configuration.key_recovery_maximum_concurrency,
    )
    request_pipeline = mfkey_function.pipeline_factory.create_request_pipeline(
        key_recovery_backend=key_recovery_backend,
        admission_controller=key_recovery_admission_controller,
        cors_allowed_headers=application_configuration.cors_allowed_headers,
        cors_allowed_methods=application_configuration.cors_allowed_methods,
        cors_max_age_seconds=application_configuration.cors_max_age_seconds,
    )

    @contextlib.asynccontextmanager
    async def application_lifespan(
        fastapi_application: fastapi.FastAPI,
    ) -> collections.abc.AsyncIterator[None]:
        """Publish shared objects on application state and log the lifecycle."""
        fastapi_application.state.request_pipeline = request_pipeline
        fastapi_application.state.key_recovery_backend = key_recovery_backend
        fastapi_application.state.key_recovery_admission_controller = key_recovery_admission_controller

        logger.info(
            "services_initialised",
            key_recovery_backend_available=key_recovery_backend is not None,
            key_recovery_maximum_concurrency=application_configuration.key_recovery_maximum_concurrency,
            pipeline=repr(request_pipeline),
        )

        yield

        logger.info(
            "graceful_shutdown_initiated",
            in_flight_requests=in_flight_request_counter.count,
        )

    fastapi_application = fastapi.FastAPI(
        title="MIFARE Classic Key Recovery",
        description="Recovers MIFARE Classic sector keys from captured authentication nonces.",
        version="1.0.0",
        lifespan=application_lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # ASGI middleware executes in reverse registration order: the last
    # call to ``add_middleware`` produces the outermost layer.
    #
    #   Request → CorrelationId → RequestTimeout → PayloadSizeLimit → App

    fastapi_application.add_middleware(
        mfkey_function.middleware.RequestPayloadSizeLimitMiddleware,
        maximum_request_payload_bytes=application_configuration.maximum_request_payload_bytes,
    )

    fastapi_application.add_middleware(
        mfkey_function.middleware.RequestTimeoutMiddleware,
        request_timeout_seconds=application_configuration.timeout_for_requests_in_seconds,
    )

    fastapi_application.add_middleware(
        mfkey_function.middleware.CorrelationIdMiddleware,
        in_flight_request_counter=in_flight_request_counter,
    )

    fastapi_application.add_route(
        PIPELINE_ROUTE_PATH,
        mfkey_function.transport.create_pipeline_endpoint(request_pipeline),
        methods=PIPELINE_ROUTE_METHODS,
        include_in_schema=False,
    )

    return fastapi_application

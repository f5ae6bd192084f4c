"""
Application configuration module.

Loads all configuration values from environment variables with the prefix
MFKEY_FUNCTION_. Default values are provided for local development. A .env
file is also supported via pydantic-settings.

This module is the single source of truth for all runtime configuration
within the service process.
"""

import pydantic
import pydantic_settings


class ApplicationConfiguration(pydantic_settings.BaseSettings):
    """
    Centralised configuration for the MIFARE key recovery function.

    Every field maps to an environment variable prefixed with
    MFKEY_FUNCTION_.  For example, the field ``key_recovery_backend`` is
    populated from the environment variable MFKEY_FUNCTION_KEY_RECOVERY_BACKEND.

    Configuration categories
    ------------------------
    - **Application**: host, port, log level
    - **CORS**: allowed headers, allowed methods, preflight max age
    - **Key recovery**: backend import path, maximum concurrency
    - **Resilience**: maximum request payload size, end-to-end request timeout
    """

    # ── Application settings ─────────────────────────────────────────────

    application_host: str = "127.0.0.1"

    application_port: int = pydantic.Field(default=8080, ge=1, le=65535)

    log_level: str = pydantic.Field(
        default="INFO",
        description=(
            "Minimum log level for structured JSON logging. "
            "Accepted values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ),
    )

    # ── CORS settings ────────────────────────────────────────────────────

    cors_allowed_headers: list[str] = pydantic.Field(
        default=["Authorization", "Content-Type"],
        description=(
            "Request headers announced in Access-Control-Allow-Headers on "
            "preflight responses, as a JSON list."
        ),
    )

    cors_allowed_methods: list[str] = pydantic.Field(
        default=["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"],
        description=(
            "HTTP methods announced in Access-Control-Allow-Methods on "
            "preflight responses, as a JSON list."
        ),
    )

    cors_max_age_seconds: int = pydantic.Field(
        default=3600,
        ge=0,
        description="Value of Access-Control-Max-Age on preflight responses.",
    )

    # ── Key recovery settings ─────────────────────────────────────────────

    key_recovery_backend: str = pydantic.Field(
        default="",
        description=(
            "Import path of the MIFARE Classic key recovery backend, in the "
            "form 'package.module:attribute'. The attribute must provide "
            "mfkey32, mfkey32v2 and mfkey64 (a class is instantiated with "
            "no arguments). When empty, the key recovery endpoints respond "
            "with HTTP 503 (key_recovery_backend_unavailable). See "
            "mfkey_function.key_recovery for an example backend."
        ),
    )

    key_recovery_maximum_concurrency: int = pydantic.Field(
        default=1,
        ge=1,
        description=(
            "Maximum number of key recovery operations permitted to run "
            "concurrently within a single service instance. Additional "
            "requests are rejected immediately with HTTP 429 (service_busy)."
        ),
    )

    # ── Resilience settings ───────────────────────────────────────────────

    maximum_request_payload_bytes: int = pydantic.Field(
        default=1_048_576,
        ge=1,
        description=(
            "Maximum request payload size in bytes. Requests exceeding "
            "this limit are rejected with HTTP 413 before the body is "
            "fully read."
        ),
    )

    timeout_for_requests_in_seconds: float = pydantic.Field(
        default=60.0,
        gt=0,
        description=(
            "Maximum end-to-end duration in seconds for any single HTTP "
            "request. Requests exceeding this ceiling are cancelled and "
            "answered with HTTP 504 (request_timeout)."
        ),
    )

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_prefix="MFKEY_FUNCTION_",
    )

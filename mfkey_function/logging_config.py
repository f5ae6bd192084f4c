"""
Structured logging configuration for the function.

Configures structlog to emit one JSON object per line on **stdout**, the
format Google Cloud Logging parses into structured entries.  Every record
carries: timestamp (ISO 8601 UTC), level, severity, event, service_name
and, while a request is being handled, correlation_id.

``severity`` uses the Cloud Logging severity names so that log entries
are classified correctly by the hosting platform.  Both structlog-native
loggers and standard library loggers (used by Uvicorn) go through the
same processors.

Every processor here is a pure function from an event dict to an event
dict; no state is kept between records.
"""

import logging
import sys
import traceback
import typing

import structlog

SERVICE_NAME = "mfkey-function"

CLOUD_LOGGING_SEVERITIES = (
    "DEFAULT",
    "DEBUG",
    "INFO",
    "NOTICE",
    "WARNING",
    "ERROR",
    "CRITICAL",
    "ALERT",
    "EMERGENCY",
)

# Attributes copied from an exception by ``error_to_plain_object`` when
# present and not ``None``.
_ERROR_ATTRIBUTE_NAMES = (
    "status_code",
    "error_code",
    "detail",
    "position",
    "errno",
    "strerror",
    "filename",
    "reason",
)


def error_to_plain_object(error: BaseException) -> dict[str, typing.Any]:
    """
    Convert an exception into a JSON-serialisable dict for logging.

    The result always contains ``name`` and ``message``; known diagnostic
    attributes (see ``_ERROR_ATTRIBUTE_NAMES``) are included when set.
    ``cause`` holds the repr of ``__cause__`` when the error was chained,
    and ``stack`` the formatted traceback when the error was raised.
    """
    plain_object: dict[str, typing.Any] = {
        "name": type(error).__name__,
        "message": str(error),
    }

    for attribute_name in _ERROR_ATTRIBUTE_NAMES:
        attribute_value = getattr(error, attribute_name, None)
        if attribute_value is not None:
            plain_object[attribute_name] = (
                attribute_value if isinstance(attribute_value, (str, int, float, bool)) else str(attribute_value)
            )

    if error.__cause__ is not None:
        plain_object["cause"] = repr(error.__cause__)

    if error.__traceback__ is not None:
        plain_object["stack"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__),
        )

    return plain_object


def to_cloud_logging_severity(level_name: str) -> str:
    """
    Map a Python log level name to a Cloud Logging severity.

    ``warn``/``exception``/``fatal`` aliases are normalised; anything
    unrecognised maps to ``DEFAULT``.
    """
    normalised_level_name = {
        "WARN": "WARNING",
        "EXCEPTION": "ERROR",
        "FATAL": "CRITICAL",
    }.get(level_name.upper(), level_name.upper())

    if normalised_level_name in CLOUD_LOGGING_SEVERITIES:
        return normalised_level_name
    return "DEFAULT"


def _add_service_name(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Inject the service name into every log entry."""
    event_dict["service_name"] = SERVICE_NAME
    return event_dict


def _uppercase_level(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Normalise the log level to uppercase (e.g. INFO, ERROR)."""
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def _add_cloud_logging_severity(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Derive the Cloud Logging ``severity`` field from the log level."""
    event_dict["severity"] = to_cloud_logging_severity(event_dict.get("level", ""))
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured JSON logging to stdout.

    Should be called once during application startup, before any log
    messages are emitted.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service_name,
        structlog.stdlib.add_log_level,
        _uppercase_level,
        _add_cloud_logging_severity,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

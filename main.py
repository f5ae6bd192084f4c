"""
Entry point for the MIFARE key recovery function.

Builds the FastAPI application (``create_application`` configures
structured logging itself) and serves it with Uvicorn when executed
directly.
"""

import uvicorn

import configuration
import mfkey_function.server_factory

fastapi_application = mfkey_function.server_factory.create_application()

if __name__ == "__main__":
    application_configuration = configuration.ApplicationConfiguration()

    uvicorn.run(
        "main:fastapi_application",
        host=application_configuration.application_host,
        port=application_configuration.application_port,
        log_config=None,
    )

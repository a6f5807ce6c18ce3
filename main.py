"""
Entry point for the image generation gateway.

This module creates the FastAPI application instance and starts the Uvicorn
ASGI server when executed directly.
"""

import uvicorn

import configuration
import image_gateway.server_factory

application_configuration = configuration.ApplicationConfiguration()

fastapi_application = image_gateway.server_factory.create_application(application_configuration)

if __name__ == "__main__":
    uvicorn.run(
        "main:fastapi_application",
        host=application_configuration.application_host,
        port=application_configuration.application_port,
        log_config=None,
    )

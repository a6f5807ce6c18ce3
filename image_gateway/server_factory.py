"""
FastAPI application factory.

The ``create_application`` function constructs a fully configured FastAPI
instance with service lifecycle management, error handling, middleware and
route registration. Using a factory function (rather than a module-level
global) makes the application straightforward to test and re-create.
"""

import collections.abc
import contextlib

import fastapi
import structlog

import configuration
import image_gateway.error_handling
import image_gateway.logging_config
import image_gateway.middleware
import image_gateway.routes.file_routes
import image_gateway.routes.health_routes
import image_gateway.routes.image_routes
import image_gateway.services.file_registry
import image_gateway.services.inference_engine_service

logger = structlog.get_logger()


def register_middleware_and_routes(fastapi_application: fastapi.FastAPI) -> None:
    """
    Attach error handlers, middleware and routers to an application.

    ASGI middleware executes in reverse registration order, so the
    resulting order is::

        Request → CrossOriginHeaders → CorrelationId → App

    The cross-origin headers wrap the correlation middleware so that its
    catch-all 500 responses carry them too.
    """
    image_gateway.error_handling.register_error_handlers(fastapi_application)

    fastapi_application.add_middleware(image_gateway.middleware.CorrelationIdMiddleware)
    fastapi_application.add_middleware(image_gateway.middleware.CrossOriginHeadersMiddleware)

    fastapi_application.include_router(image_gateway.routes.image_routes.image_router)
    fastapi_application.include_router(image_gateway.routes.file_routes.file_router)
    fastapi_application.include_router(image_gateway.routes.health_routes.health_router)


def create_application(
    application_configuration: configuration.ApplicationConfiguration | None = None,
) -> fastapi.FastAPI:
    """
    Create and fully configure the FastAPI application.

    This function:
      1. Reads configuration from environment variables unless a
         configuration is supplied.
      2. Configures structured logging.
      3. Defines an async lifespan manager that creates the file registry
         and the inference engine client on startup and closes the client
         on shutdown.
      4. Registers error handlers, middleware and routes.
    """
    if application_configuration is None:
        application_configuration = configuration.ApplicationConfiguration()
    image_gateway.logging_config.configure_logging(
        log_level=application_configuration.log_level,
    )

    @contextlib.asynccontextmanager
    async def application_lifespan(
        fastapi_application: fastapi.FastAPI,
    ) -> collections.abc.AsyncIterator[None]:
        file_registry_instance = image_gateway.services.file_registry.FileRegistry(
            archives_directory=application_configuration.archives_directory,
        )
        inference_engine_service_instance = image_gateway.services.inference_engine_service.InferenceEngineService(
            inference_engine_base_url=application_configuration.inference_engine_base_url,
            request_timeout_seconds=application_configuration.timeout_for_inference_engine_requests_in_seconds,
            connection_pool_size=application_configuration.inference_engine_connection_pool_size,
            maximum_response_bytes=application_configuration.inference_engine_maximum_response_bytes,
        )

        fastapi_application.state.file_registry = file_registry_instance
        fastapi_application.state.inference_engine_service = inference_engine_service_instance
        fastapi_application.state.advertised_socket_address = application_configuration.advertised_socket_address
        fastapi_application.state.retry_after_not_ready_seconds = (
            application_configuration.retry_after_not_ready_seconds
        )

        logger.info(
            "services_initialised",
            model_name=application_configuration.model_name,
            archives_directory=application_configuration.archives_directory,
            inference_engine=application_configuration.inference_engine_base_url,
            advertised_socket_address=application_configuration.advertised_socket_address,
        )

        yield

        logger.info("graceful_shutdown_initiated")
        await inference_engine_service_instance.close()
        logger.info("services_shutdown_complete")

    fastapi_application = fastapi.FastAPI(
        title="Image Generation Gateway",
        description=(
            "Request/response boundary of an image generation API: decodes "
            "generation, edit and variation requests, stores uploaded files "
            "and forwards normalised jobs to an inference engine."
        ),
        version="1.0.0",
        lifespan=application_lifespan,
    )

    register_middleware_and_routes(fastapi_application)

    return fastapi_application

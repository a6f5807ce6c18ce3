"""
FastAPI dependency injection providers.

Each function in this module retrieves a shared service instance from the
FastAPI application state. This pattern keeps route handlers decoupled from
service construction and makes the application straightforward to test.
"""

import fastapi

import image_gateway.services.file_registry
import image_gateway.services.inference_engine_service


def get_file_registry(
    request: fastapi.Request,
) -> image_gateway.services.file_registry.FileRegistry:
    return request.app.state.file_registry  # type: ignore[no-any-return]


def get_inference_engine_service(
    request: fastapi.Request,
) -> image_gateway.services.inference_engine_service.InferenceEngineService:
    """
    Retrieve the shared InferenceEngineService instance from application state.
    """
    return request.app.state.inference_engine_service  # type: ignore[no-any-return]


def get_advertised_socket_address(request: fastapi.Request) -> str:
    """
    The ``host:port`` under which clients reach this gateway, used when
    rewriting engine URLs into download links.
    """
    return request.app.state.advertised_socket_address  # type: ignore[no-any-return]

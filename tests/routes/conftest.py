"""Shared fixtures for route integration tests."""

import fastapi
import httpx
import pytest
import pytest_asyncio

import image_gateway.dependencies
import image_gateway.server_factory

ADVERTISED_SOCKET_ADDRESS = "gateway.example:8080"


@pytest.fixture
def test_app(file_registry, mock_inference_engine_service):
    app = fastapi.FastAPI()
    image_gateway.server_factory.register_middleware_and_routes(app)

    app.dependency_overrides[image_gateway.dependencies.get_inference_engine_service] = lambda: (
        mock_inference_engine_service
    )

    app.state.file_registry = file_registry
    app.state.inference_engine_service = mock_inference_engine_service
    app.state.advertised_socket_address = ADVERTISED_SOCKET_ADDRESS
    app.state.retry_after_not_ready_seconds = 10

    return app


@pytest_asyncio.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

"""Tests for the GET /health, GET /health/ready, and GET /echo endpoints."""

import pytest

import image_gateway.services.file_registry


class TestHealthRoutes:
    @pytest.mark.asyncio
    async def test_health_returns_200(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_health_has_correlation_id(self, client):
        response = await client.get("/health")

        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_health_suppresses_caching(self, client):
        response = await client.get("/health")

        assert response.headers.get("cache-control") == "no-store, no-cache"
        assert response.headers.get("pragma") == "no-cache"

    @pytest.mark.asyncio
    async def test_health_carries_cross_origin_headers(self, client):
        response = await client.get("/health")

        assert response.headers.get("access-control-allow-origin") == "*"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/health", "/health/ready"])
    async def test_wrong_method_lists_allowed_methods(self, client, path):
        response = await client.post(path)

        assert response.status_code == 405
        assert response.json()["error"]["code"] == "method_not_allowed"
        assert response.headers["allow"] == "GET"


class TestReadinessRoutes:
    @pytest.mark.asyncio
    async def test_ready_when_dependencies_available(self, client, archives_directory):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ready",
            "checks": {"file_registry": "ok", "inference_engine": "ok"},
        }
        assert "retry-after" not in response.headers
        assert archives_directory.is_dir()

    @pytest.mark.asyncio
    async def test_not_ready_when_engine_unreachable(self, client, mock_inference_engine_service):
        mock_inference_engine_service.check_health.return_value = False

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert response.json()["checks"]["inference_engine"] == "unavailable"
        assert response.headers["retry-after"] == "10"

    @pytest.mark.asyncio
    async def test_not_ready_when_archives_not_writable(self, client, test_app, tmp_path):
        blocking_file = tmp_path / "blocked"
        blocking_file.write_bytes(b"")
        test_app.state.file_registry = image_gateway.services.file_registry.FileRegistry(blocking_file)

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"] == {"file_registry": "unavailable", "inference_engine": "ok"}

    @pytest.mark.asyncio
    async def test_retry_after_follows_configuration(self, client, test_app, mock_inference_engine_service):
        mock_inference_engine_service.check_health.return_value = False
        test_app.state.retry_after_not_ready_seconds = 45

        response = await client.get("/health/ready")

        assert response.headers["retry-after"] == "45"

    @pytest.mark.asyncio
    async def test_not_ready_when_services_not_initialised(self, client, test_app):
        del test_app.state.file_registry
        del test_app.state.inference_engine_service

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert set(response.json()["checks"].values()) == {"unavailable"}


class TestEchoRoute:
    @pytest.mark.asyncio
    async def test_echo_returns_plain_text(self, client):
        response = await client.get("/echo")

        assert response.status_code == 200
        assert response.text == "echo test"
        assert response.headers["content-type"].startswith("text/plain")

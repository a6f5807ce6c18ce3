"""
Tests for image_gateway/routes/image_routes.py.

Each endpoint is exercised end to end through the ASGI app with the
inference engine replaced by an ``AsyncMock``; the file registry is a
real one rooted in a temporary directory.
"""

import time

import pytest

import image_gateway.exceptions
import image_gateway.models

EXPECTED_DOWNLOAD_URL = "http://gateway.example:8080/v1/files/download/file_engine-output"


def _stored_file_count(archives_directory) -> int:
    if not archives_directory.exists():
        return 0
    return sum(1 for _ in archives_directory.iterdir())


# ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ
#  Generation
# ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ


class TestImageGenerationEndpoint:
    @pytest.mark.asyncio
    async def test_json_request_returns_rewritten_urls(self, client, mock_inference_engine_service):
        response = await client.post(
            "/v1/images/generations",
            json={"model": "sd-v1.5", "prompt": "a cat", "response_format": "url", "user": "alice"},
        )

        assert response.status_code == 200
        assert response.json()["data"] == [{"url": EXPECTED_DOWNLOAD_URL}]
        assert response.headers["user"] == "alice"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("user", "expected_header"),
        [("用户-1", "%E7%94%A8%E6%88%B7-1"), (" alice", "%20alice")],
    )
    async def test_user_outside_header_charset_is_percent_encoded(
        self,
        client,
        mock_inference_engine_service,
        user,
        expected_header,
    ):
        response = await client.post("/v1/images/generations", json={"model": "sd-v1.5", "user": user})

        assert response.status_code == 200
        assert response.headers["user"] == expected_header
        assert mock_inference_engine_service.generate_images.await_args.args[0].user == user

    @pytest.mark.asyncio
    async def test_json_request_is_forwarded_as_create_request(self, client, mock_inference_engine_service):
        await client.post(
            "/v1/images/generations",
            json={"model": "sd-v1.5", "prompt": "a cat", "size": "512x768", "seed": 7},
        )

        forwarded_request = mock_inference_engine_service.generate_images.await_args.args[0]
        assert isinstance(forwarded_request, image_gateway.models.ImageCreateRequest)
        assert forwarded_request.prompt == "a cat"
        assert forwarded_request.height == 512
        assert forwarded_request.width == 768
        assert forwarded_request.seed == 7

    @pytest.mark.asyncio
    async def test_minted_user_is_echoed_in_header(self, client, mock_inference_engine_service):
        response = await client.post("/v1/images/generations", json={"model": "sd-v1.5"})

        forwarded_request = mock_inference_engine_service.generate_images.await_args.args[0]
        assert response.headers["user"].startswith("user-")
        assert response.headers["user"] == forwarded_request.user

    @pytest.mark.asyncio
    async def test_multipart_request_is_accepted(self, client, mock_inference_engine_service, multipart_body):
        body, content_type = multipart_body(
            [
                ("model", "sd-v1.5"),
                ("prompt", "a cat"),
                ("steps", "20"),
                ("response_format", "url"),
            ]
        )

        response = await client.post(
            "/v1/images/generations",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 200
        assert response.json()["data"] == [{"url": EXPECTED_DOWNLOAD_URL}]
        forwarded_request = mock_inference_engine_service.generate_images.await_args.args[0]
        assert forwarded_request.steps == 20

    @pytest.mark.asyncio
    async def test_forwarded_https_yields_https_urls(self, client):
        response = await client.post(
            "/v1/images/generations",
            json={"model": "sd-v1.5", "response_format": "url"},
            headers={"X-Forwarded-Proto": "https"},
        )

        assert response.json()["data"][0]["url"] == EXPECTED_DOWNLOAD_URL.replace("http://", "https://")

    @pytest.mark.asyncio
    async def test_base64_result_is_not_rewritten(self, client, mock_inference_engine_service):
        mock_inference_engine_service.generate_images.return_value = image_gateway.models.ListImagesResponse(
            created=int(time.time()),
            data=[image_gateway.models.ImageObject(b64_json="aGVsbG8=")],
        )

        response = await client.post(
            "/v1/images/generations",
            json={"model": "sd-v1.5", "response_format": "b64_json"},
        )

        assert response.status_code == 200
        assert response.json()["data"] == [{"b64_json": "aGVsbG8="}]

    @pytest.mark.asyncio
    async def test_options_returns_preflight(self, client, mock_inference_engine_service):
        response = await client.options("/v1/images/generations")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["content-type"] == "application/json"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-methods"] == "*"
        assert response.headers["access-control-allow-headers"] == "*"
        mock_inference_engine_service.generate_images.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_is_reported_as_internal_error(self, client):
        response = await client.get("/v1/images/generations")

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Invalid HTTP Method."

    @pytest.mark.asyncio
    async def test_missing_model_is_bad_request(self, client, mock_inference_engine_service, multipart_body):
        body, content_type = multipart_body([("prompt", "a cat")])

        response = await client.post(
            "/v1/images/generations",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Missing required field: model"
        mock_inference_engine_service.generate_images.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_size_is_bad_request(self, client, multipart_body):
        body, content_type = multipart_body([("model", "sd-v1.5"), ("size", "256")])

        response = await client.post(
            "/v1/images/generations",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == (
            "Invalid size format. The correct format is `HeightxWidth`. Example: 256x256"
        )

    @pytest.mark.asyncio
    async def test_malformed_json_is_bad_request(self, client):
        response = await client.post(
            "/v1/images/generations",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "bad_request"
        assert response.json()["error"]["message"].startswith("Fail to deserialize image create request:")

    @pytest.mark.asyncio
    async def test_engine_failure_is_wrapped(self, client, mock_inference_engine_service):
        mock_inference_engine_service.generate_images.side_effect = image_gateway.exceptions.InferenceEngineError(
            "The inference engine timed out.",
        )

        response = await client.post("/v1/images/generations", json={"model": "sd-v1.5"})

        assert response.status_code == 500
        assert response.json()["error"] == {
            "code": "internal_server_error",
            "message": "Failed to get image generations. Reason: The inference engine timed out.",
            "correlation_id": response.headers["x-correlation-id"],
        }

    @pytest.mark.asyncio
    async def test_malformed_engine_url_is_internal_error(self, client, mock_inference_engine_service):
        mock_inference_engine_service.generate_images.return_value = image_gateway.models.ListImagesResponse(
            created=int(time.time()),
            data=[image_gateway.models.ImageObject(url="output.png")],
        )

        response = await client.post(
            "/v1/images/generations",
            json={"model": "sd-v1.5", "response_format": "url"},
        )

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Failed to parse the url from the image response."


# ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ
#  Edit
# ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ


class TestImageEditEndpoint:
    @pytest.mark.asyncio
    async def test_stores_image_and_mask(self, client, mock_inference_engine_service, file_registry, multipart_body):
        body, content_type = multipart_body(
            [
                ("model", "sd-v1.5"),
                ("image", b"\x89PNG-image", "cat.png"),
                ("mask", b"\x89PNG-mask", "mask.png"),
                ("strength", "0.75"),
                ("response_format", "url"),
            ]
        )

        response = await client.post(
            "/v1/images/edits",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 200
        assert response.json()["data"] == [{"url": EXPECTED_DOWNLOAD_URL}]

        forwarded_request = mock_inference_engine_service.edit_image.await_args.args[0]
        assert isinstance(forwarded_request, image_gateway.models.ImageEditRequest)
        assert forwarded_request.strength == 0.75
        assert file_registry.retrieve_content(forwarded_request.image.id) == b"\x89PNG-image"
        assert file_registry.retrieve_content(forwarded_request.mask.id) == b"\x89PNG-mask"

    @pytest.mark.asyncio
    async def test_missing_image_is_bad_request(self, client, multipart_body):
        body, content_type = multipart_body([("model", "sd-v1.5"), ("prompt", "a cat")])

        response = await client.post(
            "/v1/images/edits",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Missing required field: image"

    @pytest.mark.asyncio
    async def test_unsupported_field_keeps_already_stored_file(self, client, archives_directory, multipart_body):
        body, content_type = multipart_body(
            [
                ("model", "sd-v1.5"),
                ("image", b"\x89PNG", "cat.png"),
                ("bogus", "value"),
            ]
        )

        response = await client.post(
            "/v1/images/edits",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Unsupported field: bogus"
        assert _stored_file_count(archives_directory) == 1

    @pytest.mark.asyncio
    async def test_json_body_is_bad_request(self, client, mock_inference_engine_service):
        response = await client.post("/v1/images/edits", json={"model": "sd-v1.5"})

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "The image edit request must be sent as multipart/form-data."
        mock_inference_engine_service.edit_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_is_method_not_allowed(self, client):
        response = await client.get("/v1/images/edits")

        assert response.status_code == 405
        assert response.headers["allow"] == "OPTIONS, POST"
        assert response.json()["error"]["code"] == "method_not_allowed"

    @pytest.mark.asyncio
    async def test_engine_failure_is_wrapped(self, client, mock_inference_engine_service, multipart_body):
        mock_inference_engine_service.edit_image.side_effect = image_gateway.exceptions.InferenceEngineError(
            "The inference engine is not reachable.",
        )
        body, content_type = multipart_body([("model", "sd-v1.5"), ("image", b"\x89PNG", "cat.png")])

        response = await client.post(
            "/v1/images/edits",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 500
        assert response.json()["error"]["message"] == (
            "Failed to get image edit result. Reason: The inference engine is not reachable."
        )


# ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ
#  Variation
# ââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââââ


class TestImageVariationEndpoint:
    @pytest.mark.asyncio
    async def test_decomposes_size_and_rewrites_urls(self, client, mock_inference_engine_service, multipart_body):
        body, content_type = multipart_body(
            [
                ("image", b"\x89PNG", "cat.png"),
                ("model", "sd-v1.5"),
                ("n", "3"),
                ("size", "256x512"),
                ("response_format", "url"),
            ]
        )

        response = await client.post(
            "/v1/images/variations",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 200
        assert response.json()["data"] == [{"url": EXPECTED_DOWNLOAD_URL}]

        forwarded_request = mock_inference_engine_service.create_image_variation.await_args.args[0]
        assert isinstance(forwarded_request, image_gateway.models.ImageVariationRequest)
        assert forwarded_request.image.filename == "cat.png"
        assert forwarded_request.n == 3
        assert (forwarded_request.height, forwarded_request.width) == (256, 512)

    @pytest.mark.asyncio
    async def test_diffusion_parameter_is_unsupported(self, client, multipart_body):
        body, content_type = multipart_body(
            [
                ("image", b"\x89PNG", "cat.png"),
                ("model", "sd-v1.5"),
                ("prompt", "a cat"),
            ]
        )

        response = await client.post(
            "/v1/images/variations",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Unsupported field: prompt"

    @pytest.mark.asyncio
    async def test_delete_is_method_not_allowed(self, client):
        response = await client.delete("/v1/images/variations")

        assert response.status_code == 405
        assert response.headers["allow"] == "OPTIONS, POST"

    @pytest.mark.asyncio
    async def test_options_returns_preflight(self, client):
        response = await client.options("/v1/images/variations")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "*"

    @pytest.mark.asyncio
    async def test_engine_failure_is_wrapped(self, client, mock_inference_engine_service, multipart_body):
        mock_inference_engine_service.create_image_variation.side_effect = (
            image_gateway.exceptions.InferenceEngineError("The inference engine returned HTTP status 503.")
        )
        body, content_type = multipart_body([("image", b"\x89PNG", "cat.png"), ("model", "sd-v1.5")])

        response = await client.post(
            "/v1/images/variations",
            content=body,
            headers={"Content-Type": content_type},
        )

        assert response.status_code == 500
        assert response.json()["error"]["message"] == (
            "Failed to get image variation result. Reason: The inference engine returned HTTP status 503."
        )

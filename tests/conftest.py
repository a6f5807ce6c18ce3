"""Root test configuration: shared registry and engine fixtures."""

import time
from unittest.mock import AsyncMock

import pytest

import image_gateway.models
import image_gateway.services.file_registry


@pytest.fixture
def archives_directory(tmp_path):
    return tmp_path / "archives"


@pytest.fixture
def file_registry(archives_directory):
    return image_gateway.services.file_registry.FileRegistry(archives_directory)


def make_images_response(*urls: str) -> image_gateway.models.ListImagesResponse:
    return image_gateway.models.ListImagesResponse(
        created=int(time.time()),
        data=[image_gateway.models.ImageObject(url=url) for url in urls],
    )


@pytest.fixture
def mock_inference_engine_service():
    """
    Inference engine double.  Every job returns one image stored at
    ``/archives/file_engine-output/output.png``.
    """
    engine_result = make_images_response("/archives/file_engine-output/output.png")

    service = AsyncMock()
    service.generate_images = AsyncMock(return_value=engine_result)
    service.edit_image = AsyncMock(return_value=engine_result)
    service.create_image_variation = AsyncMock(return_value=engine_result)
    service.check_health = AsyncMock(return_value=True)
    return service


MULTIPART_TEST_BOUNDARY = "gateway-test-boundary"


def encode_multipart_body(parts) -> tuple[bytes, str]:
    """
    Encode ``parts`` as a multipart/form-data body, preserving their order.

    Each part is ``(name, text)`` for a text field or
    ``(name, content_bytes, filename)`` for a file field.  Returns the body
    and the matching Content-Type header value.
    """
    body = bytearray()
    for part in parts:
        field_name, field_value = part[0], part[1]
        filename = part[2] if len(part) > 2 else None

        content_disposition = f'form-data; name="{field_name}"'
        if filename is not None:
            content_disposition += f'; filename="{filename}"'

        body += f"--{MULTIPART_TEST_BOUNDARY}\r\n".encode()
        body += f"Content-Disposition: {content_disposition}\r\n".encode()
        if filename is not None:
            body += b"Content-Type: application/octet-stream\r\n"
        body += b"\r\n"
        body += field_value if isinstance(field_value, bytes) else field_value.encode()
        body += b"\r\n"
    body += f"--{MULTIPART_TEST_BOUNDARY}--\r\n".encode()

    return bytes(body), f"multipart/form-data; boundary={MULTIPART_TEST_BOUNDARY}"


@pytest.fixture
def multipart_body():
    return encode_multipart_body

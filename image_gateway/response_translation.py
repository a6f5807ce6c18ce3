"""
Translation of inference engine results into HTTP response bodies.

When a request asked for ``url`` responses, the engine reports each image
as a path inside its archives directory::

    /archives/{file_id}/{filename}

Such paths are meaningless to clients, so every URL is rewritten to the
gateway's own download route::

    {scheme}://{advertised_socket_address}/v1/files/download/{file_id}

The advertised socket address is configuration and is always passed in
explicitly.
"""

import fastapi
import pydantic_core
import structlog

import image_gateway.exceptions
import image_gateway.models

logger = structlog.get_logger()

FILE_IDENTIFIER_SEGMENT_INDEX = 2


def is_https(request: fastapi.Request) -> bool:
    """
    Return whether the client reached the gateway over HTTPS, either
    directly or through a proxy that sets ``X-Forwarded-Proto``.
    """
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


def build_download_url(scheme: str, advertised_socket_address: str, file_id: str) -> str:
    return f"{scheme}://{advertised_socket_address}/v1/files/download/{file_id}"


def rewrite_image_urls(
    images_response: image_gateway.models.ListImagesResponse,
    scheme: str,
    advertised_socket_address: str,
) -> image_gateway.models.ListImagesResponse:
    """
    Return a copy of ``images_response`` whose image URLs point at the
    download route.

    Raises:
        ResponseTranslationError: if an image carries no URL, or its URL
            has fewer than three ``/``-separated segments.
    """
    rewritten_images = []
    for image_object in images_response.data:
        if image_object.url is None:
            logger.error("image_url_rewrite_failed", reason="missing url")
            raise image_gateway.exceptions.ResponseTranslationError()

        url_segments = image_object.url.split("/")
        if len(url_segments) <= FILE_IDENTIFIER_SEGMENT_INDEX:
            logger.error("image_url_rewrite_failed", url=image_object.url)
            raise image_gateway.exceptions.ResponseTranslationError()

        download_url = build_download_url(
            scheme,
            advertised_socket_address,
            url_segments[FILE_IDENTIFIER_SEGMENT_INDEX],
        )
        rewritten_images.append(image_object.model_copy(update={"url": download_url}))

    return images_response.model_copy(update={"data": rewritten_images})


def translate_images_response(
    images_response: image_gateway.models.ListImagesResponse,
    image_request: image_gateway.models.ImageRequest,
    request: fastapi.Request,
    advertised_socket_address: str,
) -> dict:
    """
    Produce the JSON body returned to the client for an engine result.

    URLs are rewritten only when the request resolved to the ``url``
    response format.

    Raises:
        ResponseTranslationError: on a malformed engine URL or a result
            that cannot be serialised.
    """
    if image_request.response_format is image_gateway.models.ResponseFormat.URL:
        scheme = "https" if is_https(request) else "http"
        images_response = rewrite_image_urls(images_response, scheme, advertised_socket_address)

    try:
        return images_response.model_dump(mode="json", exclude_none=True)
    except pydantic_core.PydanticSerializationError as serialization_error:
        raise image_gateway.exceptions.ResponseTranslationError(
            f"Fail to serialize the `ListImagesResponse` instance. {serialization_error}",
        ) from serialization_error

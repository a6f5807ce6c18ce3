"""
Route definitions for the three image endpoints.

- ``/v1/images/generations``: text-to-image.  JSON or multipart body.
- ``/v1/images/edits``: image-to-image with optional mask.  Multipart only.
- ``/v1/images/variations``: variations of an image.  Multipart only.

Every endpoint follows the same pipeline::

    content-type sniff → request assembly → inference engine → response translation

``OPTIONS`` is answered with CORS preflight headers before any body is
read.  The generation endpoint reports any other method as an internal
error ("Invalid HTTP Method."); edit and variation answer 405.

The resolved ``user`` id (client supplied or minted) is echoed in the
``user`` response header so clients can correlate asynchronous results.
"""

import typing
import urllib.parse

import fastapi
import fastapi.responses
import image_gateway.dependencies
import image_gateway.exceptions
import image_gateway.middleware
import image_gateway.models
import image_gateway.request_assembly
import image_gateway.response_translation
import image_gateway.services.file_registry
import image_gateway.services.inference_engine_service

image_router = fastapi.APIRouter(
    prefix="/v1/images",
    tags=["Images"],
)

# Every method is routed to the handlers so that wrong methods produce the
# endpoint-specific errors rather than the framework's generic 405.
_ALL_HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

FileRegistryDependency = typing.Annotated[
    image_gateway.services.file_registry.FileRegistry,
    fastapi.Depends(image_gateway.dependencies.get_file_registry),
]
InferenceEngineDependency = typing.Annotated[
    image_gateway.services.inference_engine_service.InferenceEngineService,
    fastapi.Depends(image_gateway.dependencies.get_inference_engine_service),
]
AdvertisedSocketAddressDependency = typing.Annotated[
    str,
    fastapi.Depends(image_gateway.dependencies.get_advertised_socket_address),
]


def _encode_user_header(user: str) -> str:
    """
    Percent-encode a ``user`` id that cannot travel as a raw header value.
    Printable latin-1 ids without surrounding blanks are echoed unchanged.
    """
    is_header_safe = user == user.strip(" \t") and all(
        0x20 <= ord(character) <= 0xFF and character != "\x7f" for character in user
    )
    if is_header_safe:
        return user
    return urllib.parse.quote(user, safe="")


def _build_images_response(
    request: fastapi.Request,
    image_request: image_gateway.models.ImageRequest,
    images_response: image_gateway.models.ListImagesResponse,
    advertised_socket_address: str,
) -> fastapi.responses.JSONResponse:
    response_body = image_gateway.response_translation.translate_images_response(
        images_response,
        image_request,
        request,
        advertised_socket_address,
    )
    return fastapi.responses.JSONResponse(
        content=response_body,
        headers={"user": _encode_user_header(image_request.user)},
    )


@image_router.api_route(
    "/generations",
    methods=_ALL_HTTP_METHODS,
    summary="Generate images from a text prompt",
    description=(
        "Accepts an ImageCreateRequest as JSON or multipart/form-data and "
        "forwards it to the inference engine."
    ),
)
async def handle_image_generation_request(
    request: fastapi.Request,
    file_registry: FileRegistryDependency,
    inference_engine_service: InferenceEngineDependency,
    advertised_socket_address: AdvertisedSocketAddressDependency,
) -> fastapi.responses.Response:
    if request.method == "OPTIONS":
        return image_gateway.middleware.build_preflight_response()
    if request.method != "POST":
        raise image_gateway.exceptions.InternalServerError("Invalid HTTP Method.")

    image_request = await image_gateway.request_assembly.assemble_image_request(
        request,
        image_gateway.request_assembly.GENERATION,
        file_registry,
    )

    try:
        images_response = await inference_engine_service.generate_images(image_request)
    except image_gateway.exceptions.InferenceEngineError as engine_error:
        raise image_gateway.exceptions.InferenceEngineError(
            f"Failed to get image generations. Reason: {engine_error.detail}",
        ) from engine_error

    return _build_images_response(request, image_request, images_response, advertised_socket_address)


@image_router.api_route(
    "/edits",
    methods=_ALL_HTTP_METHODS,
    summary="Edit an image",
    description="Accepts an ImageEditRequest as multipart/form-data.",
)
async def handle_image_edit_request(
    request: fastapi.Request,
    file_registry: FileRegistryDependency,
    inference_engine_service: InferenceEngineDependency,
    advertised_socket_address: AdvertisedSocketAddressDependency,
) -> fastapi.responses.Response:
    if request.method == "OPTIONS":
        return image_gateway.middleware.build_preflight_response()
    if request.method != "POST":
        raise image_gateway.exceptions.MethodNotAllowedError(request.method)

    image_request = await image_gateway.request_assembly.assemble_image_request(
        request,
        image_gateway.request_assembly.EDIT,
        file_registry,
    )

    try:
        images_response = await inference_engine_service.edit_image(image_request)
    except image_gateway.exceptions.InferenceEngineError as engine_error:
        raise image_gateway.exceptions.InferenceEngineError(
            f"Failed to get image edit result. Reason: {engine_error.detail}",
        ) from engine_error

    return _build_images_response(request, image_request, images_response, advertised_socket_address)


@image_router.api_route(
    "/variations",
    methods=_ALL_HTTP_METHODS,
    summary="Create variations of an image",
    description="Accepts an ImageVariationRequest as multipart/form-data.",
)
async def handle_image_variation_request(
    request: fastapi.Request,
    file_registry: FileRegistryDependency,
    inference_engine_service: InferenceEngineDependency,
    advertised_socket_address: AdvertisedSocketAddressDependency,
) -> fastapi.responses.Response:
    if request.method == "OPTIONS":
        return image_gateway.middleware.build_preflight_response()
    if request.method != "POST":
        raise image_gateway.exceptions.MethodNotAllowedError(request.method)

    image_request = await image_gateway.request_assembly.assemble_image_request(
        request,
        image_gateway.request_assembly.VARIATION,
        file_registry,
    )

    try:
        images_response = await inference_engine_service.create_image_variation(image_request)
    except image_gateway.exceptions.InferenceEngineError as engine_error:
        raise image_gateway.exceptions.InferenceEngineError(
            f"Failed to get image variation result. Reason: {engine_error.detail}",
        ) from engine_error

    return _build_images_response(request, image_request, images_response, advertised_socket_address)

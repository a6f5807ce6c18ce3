"""
Assembly of normalised image requests from inbound HTTP bodies.

Each image endpoint accepts a fixed set of multipart field names.  The
tables below map every accepted name to a ``FieldHandler``; a part whose
name is not in the table aborts assembly with ``UnsupportedFieldError``.
Parts are processed in arrival order and assembly stops at the first
failure.

File parts of image requests are stored in the file registry as soon as
they are decoded.  A failure on a later part does not remove files that
were already stored.

The generation endpoint additionally accepts a JSON body of the same
shape.  Edit and variation requests must be multipart.
"""

import asyncio
import typing
import uuid

import fastapi
import pydantic
import python_multipart.exceptions
import starlette.datastructures
import starlette.exceptions
import starlette.formparsers
import structlog

import image_gateway.exceptions
import image_gateway.field_codec
import image_gateway.models
import image_gateway.services.file_registry

logger = structlog.get_logger()

_TEXT = image_gateway.field_codec.FieldHandler(image_gateway.field_codec.FieldKind.TEXT)
_UNSIGNED_INTEGER = image_gateway.field_codec.FieldHandler(image_gateway.field_codec.FieldKind.UNSIGNED_INTEGER)
_SIGNED_INTEGER_32 = image_gateway.field_codec.FieldHandler(image_gateway.field_codec.FieldKind.SIGNED_INTEGER_32)
_FLOAT = image_gateway.field_codec.FieldHandler(image_gateway.field_codec.FieldKind.FLOAT)
_SIZE = image_gateway.field_codec.FieldHandler(image_gateway.field_codec.FieldKind.SIZE)
_FILE = image_gateway.field_codec.FieldHandler(image_gateway.field_codec.FieldKind.FILE)
_RESPONSE_FORMAT = image_gateway.field_codec.FieldHandler(
    image_gateway.field_codec.FieldKind.ENUMERATION,
    enumeration_type=image_gateway.models.ResponseFormat,
)
_SAMPLING_METHOD = image_gateway.field_codec.FieldHandler(
    image_gateway.field_codec.FieldKind.ENUMERATION,
    enumeration_type=image_gateway.models.SamplingMethod,
)

BOUNDARY_PARAMETER = "boundary="
USER_IDENTIFIER_PREFIX = "user-"


# ──────────────────────────────────────────────────────────────────────────────
#  Field handler tables
# ──────────────────────────────────────────────────────────────────────────────

GENERATION_FIELD_HANDLERS: dict[str, image_gateway.field_codec.FieldHandler] = {
    "prompt": _TEXT,
    "negative_prompt": _TEXT,
    "model": _TEXT,
    "n": _UNSIGNED_INTEGER,
    "size": _SIZE,
    "response_format": _RESPONSE_FORMAT,
    "user": _TEXT,
    "cfg_scale": _FLOAT,
    "sample_method": _SAMPLING_METHOD,
    "steps": _UNSIGNED_INTEGER,
    "height": _UNSIGNED_INTEGER,
    "width": _UNSIGNED_INTEGER,
    "control_strength": _FLOAT,
    "seed": _SIGNED_INTEGER_32,
    "control_image": _FILE,
}

EDIT_FIELD_HANDLERS: dict[str, image_gateway.field_codec.FieldHandler] = {
    **GENERATION_FIELD_HANDLERS,
    "image": _FILE,
    "mask": _FILE,
    "strength": _FLOAT,
}

VARIATION_FIELD_HANDLERS: dict[str, image_gateway.field_codec.FieldHandler] = {
    "image": _FILE,
    "model": _TEXT,
    "n": _UNSIGNED_INTEGER,
    "size": _SIZE,
    "response_format": _RESPONSE_FORMAT,
    "user": _TEXT,
}

UPLOAD_FIELD_HANDLERS: dict[str, image_gateway.field_codec.FieldHandler] = {
    "file": _FILE,
    "purpose": _TEXT,
}

ImageRequestModel = (
    type[image_gateway.models.ImageCreateRequest]
    | type[image_gateway.models.ImageEditRequest]
    | type[image_gateway.models.ImageVariationRequest]
)


class _ImageRequestVariant(typing.NamedTuple):
    name: str
    field_handlers: dict[str, image_gateway.field_codec.FieldHandler]
    mandatory_fields: tuple[str, ...]
    request_model: ImageRequestModel


GENERATION = _ImageRequestVariant(
    name="generation",
    field_handlers=GENERATION_FIELD_HANDLERS,
    mandatory_fields=("model",),
    request_model=image_gateway.models.ImageCreateRequest,
)
EDIT = _ImageRequestVariant(
    name="edit",
    field_handlers=EDIT_FIELD_HANDLERS,
    mandatory_fields=("model", "image"),
    request_model=image_gateway.models.ImageEditRequest,
)
VARIATION = _ImageRequestVariant(
    name="variation",
    field_handlers=VARIATION_FIELD_HANDLERS,
    mandatory_fields=("model", "image"),
    request_model=image_gateway.models.ImageVariationRequest,
)


def generate_user_id() -> str:
    """Mint a correlation id for requests that do not carry ``user``."""
    return f"{USER_IDENTIFIER_PREFIX}{uuid.uuid4()}"


def is_multipart_content_type(content_type: str | None) -> bool:
    return content_type is not None and content_type.startswith("multipart/")


def extract_multipart_boundary(content_type: str) -> str | None:
    """Return the token following ``boundary=``, or ``None`` when absent."""
    boundary_index = content_type.find(BOUNDARY_PARAMETER)
    if boundary_index < 0:
        return None
    boundary = content_type[boundary_index + len(BOUNDARY_PARAMETER) :]
    return boundary or None


# ──────────────────────────────────────────────────────────────────────────────
#  Multipart parsing
# ──────────────────────────────────────────────────────────────────────────────


async def _read_multipart_form(request: fastapi.Request) -> starlette.datastructures.FormData:
    content_type = request.headers.get("content-type", "")
    if extract_multipart_boundary(content_type) is None:
        raise image_gateway.exceptions.MalformedRequestBodyError(
            "Failed to get the boundary of the multipart request body.",
        )

    try:
        return await request.form()
    except starlette.formparsers.MultiPartException as multipart_error:
        raise image_gateway.exceptions.MalformedRequestBodyError(
            f"Failed to parse the multipart request body. {multipart_error.message}",
        ) from multipart_error
    except starlette.exceptions.HTTPException as form_error:
        # Starlette wraps parser failures in an HTTPException when the
        # request is served by an application.
        raise image_gateway.exceptions.MalformedRequestBodyError(
            f"Failed to parse the multipart request body. {form_error.detail}",
        ) from form_error
    except python_multipart.exceptions.FormParserError as parse_error:
        raise image_gateway.exceptions.MalformedRequestBodyError(
            f"Failed to parse the multipart request body. {parse_error}",
        ) from parse_error


def _reject_unsupported_field(field_name: str) -> typing.NoReturn:
    logger.warning(
        "multipart_field_rejected",
        field_name=field_name,
        reason="unsupported field",
    )
    raise image_gateway.exceptions.UnsupportedFieldError(field_name)


def _apply_text_value(
    assembled_fields: dict[str, typing.Any],
    field_name: str,
    field_handler: image_gateway.field_codec.FieldHandler,
    field_value: image_gateway.field_codec.MultipartValue,
) -> None:
    decoded_value = image_gateway.field_codec.decode_text_field(field_name, field_handler, field_value)
    if field_handler.kind is image_gateway.field_codec.FieldKind.SIZE:
        # Last field wins between ``size`` and explicit ``height``/``width``.
        assembled_fields["height"], assembled_fields["width"] = decoded_value
    else:
        assembled_fields[field_name] = decoded_value


def _check_mandatory_fields(assembled_fields: dict[str, typing.Any], mandatory_fields: tuple[str, ...]) -> None:
    for field_name in mandatory_fields:
        if assembled_fields.get(field_name) is None:
            raise image_gateway.exceptions.MissingFieldError(field_name)


def _build_request(
    variant: _ImageRequestVariant,
    assembled_fields: dict[str, typing.Any],
) -> image_gateway.models.ImageRequest:
    _check_mandatory_fields(assembled_fields, variant.mandatory_fields)
    if assembled_fields.get("user") is None:
        assembled_fields["user"] = generate_user_id()

    try:
        return variant.request_model.model_validate(assembled_fields)
    except pydantic.ValidationError as validation_error:
        raise image_gateway.exceptions.MalformedRequestBodyError(
            f"Fail to deserialize image {variant.name} request: {validation_error}",
        ) from validation_error


async def _assemble_multipart_image_request(
    request: fastapi.Request,
    variant: _ImageRequestVariant,
    file_registry: image_gateway.services.file_registry.FileRegistry,
) -> image_gateway.models.ImageRequest:
    form = await _read_multipart_form(request)
    assembled_fields: dict[str, typing.Any] = {}

    try:
        for field_name, field_value in form.multi_items():
            field_handler = variant.field_handlers.get(field_name)
            if field_handler is None:
                _reject_unsupported_field(field_name)

            if field_handler.expects_file:
                filename, upload = image_gateway.field_codec.extract_upload_filename(field_name, field_value)
                content = await upload.read()
                assembled_fields[field_name] = await asyncio.to_thread(
                    file_registry.create,
                    filename,
                    content,
                )
            else:
                _apply_text_value(assembled_fields, field_name, field_handler, field_value)
    finally:
        await form.close()

    return _build_request(variant, assembled_fields)


async def _assemble_json_generation_request(
    request: fastapi.Request,
) -> image_gateway.models.ImageCreateRequest:
    body = await request.body()
    try:
        image_request = image_gateway.models.ImageCreateRequest.model_validate_json(body)
    except pydantic.ValidationError as validation_error:
        raise image_gateway.exceptions.MalformedRequestBodyError(
            f"Fail to deserialize image create request: {validation_error}",
        ) from validation_error

    if image_request.user is None:
        image_request.user = generate_user_id()
    return image_request


# ──────────────────────────────────────────────────────────────────────────────
#  Public entry points
# ──────────────────────────────────────────────────────────────────────────────


async def assemble_image_request(
    request: fastapi.Request,
    variant: _ImageRequestVariant,
    file_registry: image_gateway.services.file_registry.FileRegistry,
) -> image_gateway.models.ImageRequest:
    """
    Build the normalised request for one image endpoint.

    Multipart bodies are decoded field by field.  A non-multipart body is
    decoded as JSON for the generation endpoint and rejected for the
    edit and variation endpoints.  The method is checked by the route
    before this is called.

    Returns:
        A request model with ``user`` always set.

    Raises:
        BadRequestError: on any decode failure.
        StorageError: if a file part cannot be stored.
    """
    content_type = request.headers.get("content-type")

    if is_multipart_content_type(content_type):
        image_request = await _assemble_multipart_image_request(request, variant, file_registry)
    elif variant is GENERATION:
        image_request = await _assemble_json_generation_request(request)
    else:
        raise image_gateway.exceptions.MalformedRequestBodyError(
            f"The image {variant.name} request must be sent as multipart/form-data.",
        )

    logger.info(
        "image_request_assembled",
        request_kind=variant.name,
        model=image_request.model,
        user=image_request.user,
    )
    return image_request


async def assemble_file_upload(
    request: fastapi.Request,
    file_registry: image_gateway.services.file_registry.FileRegistry,
) -> image_gateway.models.FileObject:
    """
    Decode the single-file upload body of ``POST /v1/files`` and store it.

    Unlike image requests, the file is stored only once the whole body has
    been decoded, because ``purpose`` may follow the file part.

    Raises:
        BadRequestError: if the body is not multipart, contains an
            unsupported field, or carries no ``file`` part.
        StorageError: if the file cannot be stored.
    """
    if not is_multipart_content_type(request.headers.get("content-type")):
        raise image_gateway.exceptions.MalformedRequestBodyError(
            "The file upload request must be sent as multipart/form-data.",
        )

    form = await _read_multipart_form(request)
    uploaded_filename: str | None = None
    uploaded_content = b""
    purpose = image_gateway.models.DEFAULT_FILE_PURPOSE

    try:
        for field_name, field_value in form.multi_items():
            field_handler = UPLOAD_FIELD_HANDLERS.get(field_name)
            if field_handler is None:
                _reject_unsupported_field(field_name)

            if field_handler.expects_file:
                uploaded_filename, upload = image_gateway.field_codec.extract_upload_filename(
                    field_name,
                    field_value,
                )
                uploaded_content = await upload.read()
            else:
                purpose = image_gateway.field_codec.decode_text_field(field_name, field_handler, field_value)
    finally:
        await form.close()

    if uploaded_filename is None:
        raise image_gateway.exceptions.MissingFieldError("file")

    return await asyncio.to_thread(
        file_registry.create,
        uploaded_filename,
        uploaded_content,
        purpose,
    )

"""
Pydantic models for request decoding, engine results and file objects.

Request models describe the normalised request handed to the inference
engine.  JSON bodies are validated directly against them; multipart
bodies are assembled field by field by ``request_assembly.py`` and then
validated against the same models, so both wire formats produce
identical request objects.

Optional fields that were not supplied are omitted (not ``null``) when a
request is forwarded to the engine: serialisation uses
``exclude_none=True``.
"""

import enum
import typing

import pydantic

import image_gateway.exceptions
import image_gateway.field_codec

# ──────────────────────────────────────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────────────────────────────────────

FILE_IDENTIFIER_PREFIX = "file_"
DEFAULT_FILE_PURPOSE = "assistants"


class ResponseFormat(str, enum.Enum):
    """How generated images are returned to the client."""

    URL = "url"
    BASE64_JSON = "b64_json"


class SamplingMethod(str, enum.Enum):
    """Sampling methods understood by the inference engine."""

    EULER = "euler"
    EULER_ANCESTRAL = "euler_a"
    HEUN = "heun"
    DPM2 = "dpm2"
    DPM_PLUS_PLUS_2S_ANCESTRAL = "dpm++2s_a"
    DPM_PLUS_PLUS_2M = "dpm++2m"
    DPM_PLUS_PLUS_2M_V2 = "dpm++2mv2"
    IPNDM = "ipndm"
    IPNDM_V = "ipndm_v"
    LCM = "lcm"


UnsignedInteger = typing.Annotated[
    int,
    pydantic.Field(ge=0, le=image_gateway.field_codec.MAXIMUM_UNSIGNED_64_BIT_VALUE),
]
SignedInteger32 = typing.Annotated[
    int,
    pydantic.Field(
        ge=image_gateway.field_codec.MINIMUM_SIGNED_32_BIT_VALUE,
        le=image_gateway.field_codec.MAXIMUM_SIGNED_32_BIT_VALUE,
    ),
]
FiniteFloat = typing.Annotated[float, pydantic.Field(allow_inf_nan=False)]


# ──────────────────────────────────────────────────────────────────────────────
#  File objects
# ──────────────────────────────────────────────────────────────────────────────


class FileObject(pydantic.BaseModel):
    """
    A stored asset.  Owned by the file registry; requests and responses
    only reference it.
    """

    id: str = pydantic.Field(
        ...,
        description="Identifier of the form ``file_<uuid4>``, minted at upload time.",
    )
    bytes: int = pydantic.Field(..., ge=0, description="Size of the stored content in bytes.")
    created_at: int = pydantic.Field(..., description="Unix timestamp (seconds) of the upload.")
    filename: str = pydantic.Field(..., description="Original filename supplied by the client.")
    object: typing.Literal["file"] = "file"
    purpose: str = pydantic.Field(default=DEFAULT_FILE_PURPOSE)


class DeleteFileStatus(pydantic.BaseModel):
    """Result of ``DELETE /v1/files/{id}``.  Always returned with HTTP 200."""

    id: str
    object: typing.Literal["file"] = "file"
    deleted: bool


class ListFilesResponse(pydantic.BaseModel):
    """Result of ``GET /v1/files``."""

    object: typing.Literal["list"] = "list"
    data: list[FileObject]


# ──────────────────────────────────────────────────────────────────────────────
#  Request models
# ──────────────────────────────────────────────────────────────────────────────


class _ImageRequestBase(pydantic.BaseModel):
    """Fields shared by all three request variants."""

    model: str = pydantic.Field(..., description="Name of the model that performs the job.")
    n: UnsignedInteger | None = pydantic.Field(default=None, description="Number of images to produce.")
    height: UnsignedInteger | None = None
    width: UnsignedInteger | None = None
    response_format: ResponseFormat | None = None
    user: str | None = pydantic.Field(
        default=None,
        description="Correlation id echoed in the ``user`` response header. Minted when omitted.",
    )

    @pydantic.model_validator(mode="before")
    @classmethod
    def decompose_size(cls, values: typing.Any) -> typing.Any:
        """
        Accept the legacy ``size`` ("HxW") key in JSON bodies and replace it
        with ``height`` and ``width``.  Explicit ``height``/``width`` keys win.
        """
        if not isinstance(values, dict) or "size" not in values:
            return values

        values = dict(values)
        size_value = values.pop("size")
        if size_value is None:
            return values
        if not isinstance(size_value, str):
            raise ValueError("Invalid size format. The correct format is `HeightxWidth`. Example: 256x256")
        try:
            height, width = image_gateway.field_codec.parse_size(size_value)
        except image_gateway.exceptions.InvalidSizeFormatError as size_error:
            raise ValueError(size_error.detail) from size_error
        values.setdefault("height", height)
        values.setdefault("width", width)
        return values

    model_config = pydantic.ConfigDict(extra="forbid")


class _DiffusionParameters(pydantic.BaseModel):
    """Sampling and control parameters for generation and edit jobs."""

    prompt: str | None = None
    negative_prompt: str | None = None
    cfg_scale: FiniteFloat | None = None
    sample_method: SamplingMethod | None = None
    steps: UnsignedInteger | None = None
    control_strength: FiniteFloat | None = None
    seed: SignedInteger32 | None = None
    control_image: FileObject | None = None


class ImageCreateRequest(_DiffusionParameters, _ImageRequestBase):
    """Normalised request for ``POST /v1/images/generations``."""


class ImageEditRequest(_DiffusionParameters, _ImageRequestBase):
    """Normalised request for ``POST /v1/images/edits``."""

    image: FileObject
    mask: FileObject | None = None
    strength: FiniteFloat | None = None


class ImageVariationRequest(_ImageRequestBase):
    """Normalised request for ``POST /v1/images/variations``."""

    image: FileObject


ImageRequest = ImageCreateRequest | ImageEditRequest | ImageVariationRequest


# ──────────────────────────────────────────────────────────────────────────────
#  Engine result models
# ──────────────────────────────────────────────────────────────────────────────


class ImageObject(pydantic.BaseModel):
    """
    One generated image.  Exactly one of ``b64_json`` and ``url`` is
    expected, according to the request's response format.
    """

    b64_json: str | None = None
    url: str | None = None
    prompt: str | None = None


class ListImagesResponse(pydantic.BaseModel):
    """The inference engine's result for all three job kinds."""

    created: int
    data: list[ImageObject]


# ──────────────────────────────────────────────────────────────────────────────
#  Error models
# ──────────────────────────────────────────────────────────────────────────────


class ErrorDetail(pydantic.BaseModel):
    """Detailed error information nested inside the error response."""

    code: str = pydantic.Field(
        ...,
        description="A machine-readable error code in snake_case format.",
    )

    message: str = pydantic.Field(
        ...,
        description="A human-readable error description.",
    )

    details: str | list | None = pydantic.Field(
        default=None,
        description="Additional context about the error, when available.",
    )

    correlation_id: str = pydantic.Field(
        ...,
        description="UUID v4 correlation identifier matching the X-Correlation-ID response header.",
    )


class ErrorResponse(pydantic.BaseModel):
    """Standardised error response returned for all error conditions."""

    error: ErrorDetail

"""
Custom exception classes for the image generation gateway.

This module defines the closed set of failure kinds the gateway can
produce.  Every exception carries the structured context of the failure
(field name, raw value, file identifier, underlying cause) and renders
it to a human-readable ``detail`` string.  The centralised error-handling
layer (``error_handling.py``) maps each branch of the hierarchy to an
HTTP status code and a machine-readable error code.

Exception hierarchy
-------------------
::

    Exception (Python built-in)
    └── ServiceError
        ├── BadRequestError                      → HTTP 400
        │   ├── FieldDecodeError
        │   │   ├── NotTextError
        │   │   ├── MissingFilenameError
        │   │   ├── FieldParseError
        │   │   ├── InvalidSizeFormatError
        │   │   ├── UnsupportedFieldError
        │   │   └── MissingFieldError
        │   └── MalformedRequestBodyError
        ├── InternalServerError                  → HTTP 500
        │   ├── FileRegistryError
        │   │   ├── StorageError
        │   │   ├── FileObjectNotFoundError
        │   │   └── UnsupportedExtensionError
        │   ├── InferenceEngineError
        │   └── ResponseTranslationError
        └── MethodNotAllowedError                → HTTP 405

Wrong HTTP methods
~~~~~~~~~~~~~~~~~~
The generation endpoint reports a wrong method as an
``InternalServerError`` ("Invalid HTTP Method."), while the edit and
variation endpoints raise ``MethodNotAllowedError``.  Both behaviours are
kept as they are observed by existing clients.
"""


class ServiceError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        detail: A human-readable description of the error, safe for
            inclusion in API responses.
    """

    default_detail: str = "A service error occurred."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class BadRequestError(ServiceError):
    """The client sent a request the gateway cannot decode."""

    default_detail = "The request could not be decoded."


class InternalServerError(ServiceError):
    """A failure inside the gateway or one of its collaborators."""

    default_detail = "An internal error occurred."


class MethodNotAllowedError(ServiceError):
    """
    Raised by the edit and variation endpoints for any method other than
    ``POST`` and ``OPTIONS``.
    """

    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"The HTTP method {method} is not allowed for this endpoint.")


# ──────────────────────────────────────────────────────────────────────────────
#  Field decoding
# ──────────────────────────────────────────────────────────────────────────────


class FieldDecodeError(BadRequestError):
    """Base class for failures tied to a single multipart field."""

    def __init__(self, field_name: str, detail: str) -> None:
        self.field_name = field_name
        super().__init__(detail)


class NotTextError(FieldDecodeError):
    """A file part arrived where a text value is expected."""

    def __init__(self, field_name: str) -> None:
        super().__init__(
            field_name,
            f"Failed to get the {field_name}. The {field_name} field in the request should be a text field.",
        )


class MissingFilenameError(FieldDecodeError):
    """A file field arrived without a usable filename."""

    def __init__(self, field_name: str) -> None:
        super().__init__(
            field_name,
            f"Failed to upload the {field_name} file. The filename is not provided.",
        )


class FieldParseError(FieldDecodeError):
    """
    A text value does not parse as the field's target type.

    Attributes:
        raw_value: The text exactly as received.
        reason: Why parsing failed (e.g. ``"invalid digit found in string"``).
    """

    def __init__(self, field_name: str, raw_value: str, reason: str) -> None:
        self.raw_value = raw_value
        self.reason = reason
        super().__init__(
            field_name,
            f"Failed to parse the {field_name}. Reason: {reason}",
        )


class InvalidSizeFormatError(FieldDecodeError):
    """The legacy ``size`` field is not of the form ``HeightxWidth``."""

    def __init__(self, raw_value: str) -> None:
        self.raw_value = raw_value
        super().__init__(
            "size",
            "Invalid size format. The correct format is `HeightxWidth`. Example: 256x256",
        )


class UnsupportedFieldError(FieldDecodeError):
    """The multipart body contains a field name the endpoint does not accept."""

    def __init__(self, field_name: str) -> None:
        super().__init__(field_name, f"Unsupported field: {field_name}")


class MissingFieldError(FieldDecodeError):
    """A mandatory field (``model``, ``image``, ``file``) was not supplied."""

    def __init__(self, field_name: str) -> None:
        super().__init__(field_name, f"Missing required field: {field_name}")


class MalformedRequestBodyError(BadRequestError):
    """
    The request body as a whole could not be decoded: a missing multipart
    boundary, an unparseable multipart stream, or JSON that does not match
    the request schema.
    """


# ──────────────────────────────────────────────────────────────────────────────
#  File registry
# ──────────────────────────────────────────────────────────────────────────────


class FileRegistryError(InternalServerError):
    """Base class for file registry failures."""


class StorageError(FileRegistryError):
    """A filesystem operation failed while storing a file."""

    def __init__(self, filename: str, cause: OSError) -> None:
        self.filename = filename
        self.cause = cause
        super().__init__(f"Failed to create archive document {filename}. {cause}")


class FileObjectNotFoundError(FileRegistryError):
    """The file identifier is unknown or its backing file is missing."""

    def __init__(self, file_id: str) -> None:
        self.file_id = file_id
        super().__init__(f"File not found: {file_id}")


class UnsupportedExtensionError(FileRegistryError):
    """The stored filename's extension is not on the download allow-list."""

    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported file extension: {extension}")


# ──────────────────────────────────────────────────────────────────────────────
#  Inference engine and response translation
# ──────────────────────────────────────────────────────────────────────────────


class InferenceEngineError(InternalServerError):
    """
    Raised when the external inference engine cannot be reached, times
    out, answers with a non-success status, or returns a body that does
    not match the expected result shape.
    """

    default_detail = "The inference engine is unavailable."


class ResponseTranslationError(InternalServerError):
    """The engine result could not be translated into an HTTP response."""

    default_detail = "Failed to parse the url from the image response."

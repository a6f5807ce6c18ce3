"""
Decoding of individual multipart fields.

A multipart body is a sequence of named parts, each either an inline
text value or an uploaded file.  Starlette's form parser surfaces the
former as ``str`` and the latter as ``UploadFile``.  This module turns
one such part into a typed value according to a ``FieldHandler``
declared by the request assembler, or raises one of the field decode
errors from ``exceptions.py``.

Parsing is strict.  Integers accept an optional sign followed by ASCII
digits only (no surrounding whitespace, no underscores) and are range
checked against their target width; floats must be finite; enumerations
accept only their declared values.
"""

import dataclasses
import enum
import math
import re

import starlette.datastructures

import image_gateway.exceptions

MAXIMUM_UNSIGNED_64_BIT_VALUE = 18_446_744_073_709_551_615  # 2^64 - 1
MINIMUM_SIGNED_32_BIT_VALUE = -2_147_483_648
MAXIMUM_SIGNED_32_BIT_VALUE = 2_147_483_647

_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")
_UNSIGNED_INTEGER_PATTERN = re.compile(r"\+?[0-9]+")
_FLOAT_PATTERN = re.compile(
    r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?",
)
_CONTROL_CHARACTER_PATTERN = re.compile(r"[\x00-\x1f\x7f]")

SIZE_SEPARATOR = "x"

MultipartValue = str | starlette.datastructures.UploadFile


class FieldKind(enum.Enum):
    """The target type of a multipart field."""

    TEXT = "text"
    UNSIGNED_INTEGER = "unsigned_integer"
    SIGNED_INTEGER_32 = "signed_integer_32"
    FLOAT = "float"
    ENUMERATION = "enumeration"
    SIZE = "size"
    FILE = "file"


@dataclasses.dataclass(frozen=True)
class FieldHandler:
    """
    How one accepted field name is decoded.

    Attributes:
        kind: The target type.
        enumeration_type: The ``enum.Enum`` subclass for ``ENUMERATION``
            fields; unused otherwise.
    """

    kind: FieldKind
    enumeration_type: type[enum.Enum] | None = None

    @property
    def expects_file(self) -> bool:
        return self.kind is FieldKind.FILE


def parse_integer(field_name: str, raw_value: str, minimum: int, maximum: int) -> int:
    """Parse ``raw_value`` as a base-10 integer within ``[minimum, maximum]``."""
    if raw_value == "":
        raise image_gateway.exceptions.FieldParseError(
            field_name, raw_value, "cannot parse integer from empty string"
        )
    pattern = _UNSIGNED_INTEGER_PATTERN if minimum >= 0 else _INTEGER_PATTERN
    if pattern.fullmatch(raw_value) is None:
        raise image_gateway.exceptions.FieldParseError(field_name, raw_value, "invalid digit found in string")

    parsed_value = int(raw_value)
    if parsed_value > maximum:
        raise image_gateway.exceptions.FieldParseError(
            field_name, raw_value, "number too large to fit in target type"
        )
    if parsed_value < minimum:
        raise image_gateway.exceptions.FieldParseError(
            field_name, raw_value, "number too small to fit in target type"
        )
    return parsed_value


def parse_float(field_name: str, raw_value: str) -> float:
    """Parse ``raw_value`` as a finite decimal floating point number."""
    if _FLOAT_PATTERN.fullmatch(raw_value) is None:
        raise image_gateway.exceptions.FieldParseError(field_name, raw_value, "invalid float literal")

    parsed_value = float(raw_value)
    if not math.isfinite(parsed_value):
        raise image_gateway.exceptions.FieldParseError(field_name, raw_value, "value is out of range")
    return parsed_value


def parse_enumeration(
    field_name: str,
    raw_value: str,
    enumeration_type: type[enum.Enum],
) -> enum.Enum:
    """Resolve ``raw_value`` to the member of ``enumeration_type`` with that value."""
    for member in enumeration_type:
        if member.value == raw_value:
            return member

    accepted_values = ", ".join(str(member.value) for member in enumeration_type)
    raise image_gateway.exceptions.FieldParseError(
        field_name,
        raw_value,
        f"unsupported value '{raw_value}', expected one of: {accepted_values}",
    )


def parse_size(raw_value: str) -> tuple[int, int]:
    """
    Split a legacy ``size`` value ("HeightxWidth") into ``(height, width)``.

    Raises:
        InvalidSizeFormatError: unless the value splits on ``x`` into
            exactly two unsigned integers.
    """
    size_parts = raw_value.split(SIZE_SEPARATOR)
    if len(size_parts) != 2:
        raise image_gateway.exceptions.InvalidSizeFormatError(raw_value)

    try:
        height, width = (
            parse_integer("size", size_part, 0, MAXIMUM_UNSIGNED_64_BIT_VALUE) for size_part in size_parts
        )
    except image_gateway.exceptions.FieldParseError as parse_error:
        raise image_gateway.exceptions.InvalidSizeFormatError(raw_value) from parse_error
    return height, width


def decode_text_field(
    field_name: str,
    field_handler: FieldHandler,
    field_value: MultipartValue,
) -> str | int | float | enum.Enum | tuple[int, int]:
    """
    Decode a text part according to its handler.

    Raises:
        NotTextError: if the part is a file upload.
        FieldParseError: if the text does not parse as the target type.
        InvalidSizeFormatError: for malformed ``SIZE`` values.
    """
    if not isinstance(field_value, str):
        raise image_gateway.exceptions.NotTextError(field_name)

    kind = field_handler.kind
    if kind is FieldKind.TEXT:
        return field_value
    if kind is FieldKind.UNSIGNED_INTEGER:
        return parse_integer(field_name, field_value, 0, MAXIMUM_UNSIGNED_64_BIT_VALUE)
    if kind is FieldKind.SIGNED_INTEGER_32:
        return parse_integer(
            field_name,
            field_value,
            MINIMUM_SIGNED_32_BIT_VALUE,
            MAXIMUM_SIGNED_32_BIT_VALUE,
        )
    if kind is FieldKind.FLOAT:
        return parse_float(field_name, field_value)
    if kind is FieldKind.ENUMERATION:
        if field_handler.enumeration_type is None:
            raise ValueError(f"Field handler for {field_name} declares no enumeration type.")
        return parse_enumeration(field_name, field_value, field_handler.enumeration_type)
    if kind is FieldKind.SIZE:
        return parse_size(field_value)

    raise ValueError(f"Field handler for {field_name} is not a text handler: {kind}.")


def extract_upload_filename(
    field_name: str,
    field_value: MultipartValue,
) -> tuple[str, starlette.datastructures.UploadFile]:
    """
    Return the safe filename and upload object of a file part.

    The client-supplied filename is reduced to its final path component
    so that it can never escape the per-file archive directory.

    Raises:
        MissingFilenameError: if the part is plain text, or its filename
            is empty once reduced or carries control characters.
    """
    if isinstance(field_value, str):
        raise image_gateway.exceptions.MissingFilenameError(field_name)

    supplied_filename = field_value.filename or ""
    filename = supplied_filename.replace("\\", "/").rsplit("/", 1)[-1]
    if filename in ("", ".", "..") or _CONTROL_CHARACTER_PATTERN.search(filename):
        raise image_gateway.exceptions.MissingFilenameError(field_name)

    return filename, field_value

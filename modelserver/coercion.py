"""Type coercion between wire values and in-memory domain values.

The set of declared types is closed. Each member has a decode rule
(JSON value -> domain value) and an encode rule (domain value -> JSON
value):

  image    base64 string (optionally a data URI)  <->  PIL.Image.Image
  text     str                                    <->  str
  number   int | float (finite)                   <->  float
  integer  int                                    <->  int
  boolean  bool                                   <->  bool

Images are encoded as PNG so that decode(encode(img)) preserves mode,
size and pixels.
"""

from __future__ import annotations

import base64
import binascii
import io
import math
from enum import Enum
from typing import Any

from PIL import Image

from modelserver.errors import InvalidInputError, SerializationError


class FieldType(str, Enum):
    IMAGE = "image"
    TEXT = "text"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"

    @classmethod
    def parse(cls, value: FieldType | str) -> FieldType:
        """Normalise a type tag. Raises ValueError for anything outside the set."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown field type {value!r}. Valid types: {valid}") from None


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------

def image_to_base64(image: Image.Image, format: str = "PNG") -> str:
    """Serialize a PIL image to a base64 string."""
    buf = io.BytesIO()
    image.save(buf, format=format)
    return base64.b64encode(buf.getvalue()).decode("ascii")


def image_from_base64(data: str) -> Image.Image:
    """Decode a base64 string (or data URI) into a fully loaded PIL image.

    Raises ValueError or OSError when the payload is not strict base64 or
    not an image PIL can read.
    """
    text = data.strip()
    if text.startswith("data:"):
        header, _, text = text.partition(",")
        if not header.endswith(";base64"):
            raise ValueError("data URI is not base64-encoded")
    raw_bytes = base64.b64decode(text, validate=True)
    img = Image.open(io.BytesIO(raw_bytes))
    # Force decoding now so truncated payloads fail here, not in the handler.
    img.load()
    return img


# ---------------------------------------------------------------------------
# Decode (wire -> domain)
# ---------------------------------------------------------------------------

def _decode_image(value: Any) -> Image.Image:
    if not isinstance(value, str):
        raise InvalidInputError(f"expected a base64 string, got {type(value).__name__}")
    try:
        return image_from_base64(value)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError(f"not valid base64 image data: {exc}") from exc
    except (OSError, SyntaxError, EOFError, Image.DecompressionBombError) as exc:
        raise InvalidInputError(f"not a decodable image: {exc}") from exc


def _decode_text(value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidInputError(f"expected a string, got {type(value).__name__}")
    return value


def _decode_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"expected a number, got {type(value).__name__}")
    try:
        number = float(value)
    except OverflowError:
        raise InvalidInputError("number out of range") from None
    if not math.isfinite(number):
        raise InvalidInputError("expected a finite number")
    return number


def _decode_integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"expected an integer, got {type(value).__name__}")
    return value


def _decode_boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidInputError(f"expected a boolean, got {type(value).__name__}")
    return value


_DECODERS = {
    FieldType.IMAGE: _decode_image,
    FieldType.TEXT: _decode_text,
    FieldType.NUMBER: _decode_number,
    FieldType.INTEGER: _decode_integer,
    FieldType.BOOLEAN: _decode_boolean,
}


def decode(field_type: FieldType, value: Any) -> Any:
    """Convert a wire value to its domain value. Raises InvalidInputError."""
    if value is None:
        raise InvalidInputError(f"missing {FieldType(field_type).value} value")
    return _DECODERS[FieldType(field_type)](value)


# ---------------------------------------------------------------------------
# Encode (domain -> wire)
# ---------------------------------------------------------------------------

def _encode_image(value: Any) -> str:
    if not isinstance(value, Image.Image):
        raise SerializationError(f"expected a PIL image, got {type(value).__name__}")
    try:
        return image_to_base64(value, format="PNG")
    except (OSError, ValueError, KeyError) as exc:
        raise SerializationError(f"image mode {value.mode!r} cannot be encoded: {exc}") from exc


def _encode_text(value: Any) -> str:
    if not isinstance(value, str):
        raise SerializationError(f"expected a string, got {type(value).__name__}")
    return value


def _encode_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SerializationError(f"expected a number, got {type(value).__name__}")
    try:
        number = float(value)
    except OverflowError:
        raise SerializationError("number out of range for a JSON float") from None
    if not math.isfinite(number):
        raise SerializationError(f"number {value!r} is not representable in JSON")
    return number


def _encode_integer(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SerializationError(f"expected an integer, got {type(value).__name__}")
    return int(value)


def _encode_boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise SerializationError(f"expected a boolean, got {type(value).__name__}")
    return value


_ENCODERS = {
    FieldType.IMAGE: _encode_image,
    FieldType.TEXT: _encode_text,
    FieldType.NUMBER: _encode_number,
    FieldType.INTEGER: _encode_integer,
    FieldType.BOOLEAN: _encode_boolean,
}


def encode(field_type: FieldType, value: Any) -> Any:
    """Convert a domain value to its wire value. Raises SerializationError."""
    return _ENCODERS[FieldType(field_type)](value)

"""Body Codec - Serializes outbound payloads and parses inbound bodies.

Outbound, encode_body() turns a payload into bytes plus the Content-Type
that describes them, according to an EncodingMode. Inbound, decode_body()
picks a decoder from the response Content-Type using an ordered rule table:
first matching predicate wins, with a text fallback.

Content-Type matching is a case-insensitive substring test, so parameters
such as "; charset=utf-8" never prevent a match.
"""

from __future__ import annotations

import codecs
import json
import math
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel

from flux_http.errors import RequestValidationError
from flux_http.models import EncodingMode, MultipartFile

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
TEXT_CONTENT_TYPE = "text/plain"
BINARY_CONTENT_TYPE = "application/octet-stream"
MULTIPART_CONTENT_TYPE = "multipart/form-data"

_CRLF = b"\r\n"


@dataclass(frozen=True)
class EncodedBody:
    """Bytes ready to send, and the Content-Type describing them."""

    content: bytes | None
    content_type: str | None


NO_BODY = EncodedBody(content=None, content_type=None)


# =============================================================================
# Encoding
# =============================================================================


def _encode_json(payload: Any) -> EncodedBody:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    try:
        text = json.dumps(payload, ensure_ascii=False, allow_nan=False)
    except (ValueError, TypeError) as e:
        # Circular references and NaN/Infinity surface as ValueError
        raise RequestValidationError(f"Payload is not JSON serializable: {e}") from e
    except RecursionError as e:
        raise RequestValidationError("Payload is not JSON serializable: nesting too deep") from e
    return EncodedBody(text.encode("utf-8"), JSON_CONTENT_TYPE)


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and not math.isfinite(value):
        raise RequestValidationError(f"Form value {value!r} cannot be encoded")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _form_pairs(payload: Any) -> Iterable[tuple[Any, Any]]:
    if isinstance(payload, Mapping):
        return payload.items()
    if isinstance(payload, (list, tuple)) and all(
        isinstance(item, (list, tuple)) and len(item) == 2 for item in payload
    ):
        return payload
    raise RequestValidationError(
        f"Form payload must be a mapping or a sequence of pairs, got {type(payload).__name__}"
    )


def _encode_form(payload: Any) -> EncodedBody:
    pairs: list[tuple[str, str]] = []
    for key, value in _form_pairs(payload):
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((str(key), _form_value(v)) for v in value if v is not None)
        else:
            pairs.append((str(key), _form_value(value)))
    return EncodedBody(urlencode(pairs).encode("ascii"), FORM_CONTENT_TYPE)


def _escape_disposition_param(value: str) -> str:
    """Escape a form-data name/filename the way browsers do.

    Quote, CR and LF are percent-encoded so they cannot terminate the
    parameter or the header line.
    """
    return value.replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


def _multipart_parts(payload: Any) -> list[tuple[bytes, bytes]]:
    """Build (headers, content) for every non-null field."""
    if not isinstance(payload, Mapping):
        raise RequestValidationError(
            f"Multipart payload must be a mapping of field names, got {type(payload).__name__}"
        )

    parts: list[tuple[bytes, bytes]] = []
    for name, value in payload.items():
        if value is None:
            continue
        disposition = f'Content-Disposition: form-data; name="{_escape_disposition_param(str(name))}"'

        if isinstance(value, MultipartFile):
            filename = _escape_disposition_param(value.filename)
            content_type = value.content_type.replace("\r", "").replace("\n", "")
            head = f'{disposition}; filename="{filename}"\r\nContent-Type: {content_type}'
            parts.append((head.encode("utf-8"), value.content))
        elif isinstance(value, (bytes, bytearray, memoryview)):
            parts.append((disposition.encode("utf-8"), bytes(value)))
        elif isinstance(value, str):
            parts.append((disposition.encode("utf-8"), value.encode("utf-8")))
        elif isinstance(value, (int, float, bool)):
            parts.append((disposition.encode("utf-8"), _form_value(value).encode("utf-8")))
        else:
            raise RequestValidationError(
                f"Multipart field '{name}' must be str, bytes or MultipartFile, "
                f"got {type(value).__name__}"
            )
    return parts


def _new_boundary() -> str:
    return f"----FluxFormBoundary{secrets.token_hex(16)}"


def _encode_multipart(payload: Any, boundary: str | None = None) -> EncodedBody:
    parts = _multipart_parts(payload)

    boundary = boundary or _new_boundary()
    # Regenerate until the delimiter cannot occur inside any part
    while any(boundary.encode("ascii") in head + content for head, content in parts):
        boundary = _new_boundary()

    delimiter = b"--" + boundary.encode("ascii")
    chunks: list[bytes] = []
    for head, content in parts:
        chunks += [delimiter, _CRLF, head, _CRLF, _CRLF, content, _CRLF]
    chunks += [delimiter, b"--", _CRLF]

    return EncodedBody(b"".join(chunks), f"{MULTIPART_CONTENT_TYPE}; boundary={boundary}")


def _encode_text(payload: Any) -> EncodedBody:
    if not isinstance(payload, str):
        raise RequestValidationError(
            f"Text payload must be a string, got {type(payload).__name__}"
        )
    return EncodedBody(payload.encode("utf-8"), TEXT_CONTENT_TYPE)


def _encode_binary(payload: Any) -> EncodedBody:
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise RequestValidationError(
            f"Binary payload must be bytes, got {type(payload).__name__}"
        )
    return EncodedBody(bytes(payload), BINARY_CONTENT_TYPE)


_ENCODERS: dict[EncodingMode, Callable[[Any], EncodedBody]] = {
    EncodingMode.JSON: _encode_json,
    EncodingMode.FORM: _encode_form,
    EncodingMode.MULTIPART: _encode_multipart,
    EncodingMode.TEXT: _encode_text,
    EncodingMode.BINARY: _encode_binary,
    EncodingMode.NONE: lambda payload: NO_BODY,
}


def encode_body(payload: Any, mode: EncodingMode | str = EncodingMode.JSON) -> EncodedBody:
    """Serialize payload for sending.

    A None payload means no body, whatever the mode.

    Raises:
        RequestValidationError: If the payload cannot be encoded under mode,
            or mode is unknown.
    """
    if payload is None:
        return NO_BODY
    try:
        mode = EncodingMode(mode)
    except ValueError as e:
        raise RequestValidationError(f"Unknown encoding mode '{mode}'") from e
    return _ENCODERS[mode](payload)


# =============================================================================
# Decoding
# =============================================================================


def _charset(content_type: str) -> str:
    """Charset parameter of a Content-Type, if present and known; else utf-8."""
    for param in content_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset":
            name = value.strip().strip('"')
            try:
                return codecs.lookup(name).name
            except LookupError:
                break
    return "utf-8"


def _decode_text(body: bytes, content_type: Any) -> str:
    encoding = _charset(content_type) if isinstance(content_type, str) else "utf-8"
    return body.decode(encoding, errors="replace")


def _decode_json(body: bytes, content_type: Any) -> Any:
    text = _decode_text(body, content_type)
    try:
        return json.loads(text)
    except ValueError:
        # Servers mislabel bodies often enough that this is not an error
        return text


def _decode_form(body: bytes, content_type: Any) -> dict[str, str | list[str]]:
    result: dict[str, str | list[str]] = {}
    for key, value in parse_qsl(_decode_text(body, content_type), keep_blank_values=True):
        if key not in result:
            result[key] = value
        elif isinstance(result[key], list):
            result[key].append(value)
        else:
            result[key] = [result[key], value]
    return result


def _decode_binary(body: bytes, content_type: Any) -> bytes:
    return body


def _contains(*needles: str) -> Callable[[Any], bool]:
    def predicate(content_type: Any) -> bool:
        if not isinstance(content_type, str):
            return False
        lowered = content_type.lower()
        return any(needle in lowered for needle in needles)

    return predicate


Decoder = Callable[[bytes, Any], Any]

# Evaluated top to bottom; the first matching predicate wins.
DECODE_RULES: list[tuple[Callable[[Any], bool], Decoder]] = [
    (_contains("application/json"), _decode_json),
    (_contains("text/"), _decode_text),
    (_contains(FORM_CONTENT_TYPE), _decode_form),
    (_contains("application/octet-stream", "application/pdf", "image/"), _decode_binary),
]


def decode_body(body: bytes | None, content_type: Any) -> Any:
    """Parse a received body according to its declared Content-Type.

    content_type may be a string, a list of header values, or None. Lists
    with exactly one element are treated as that element; anything else that
    is not a string falls through to text decoding.
    """
    if not body:
        return ""

    if isinstance(content_type, (list, tuple)) and len(content_type) == 1:
        content_type = content_type[0]

    if content_type is None or content_type == "":
        return _decode_text(body, None)

    for predicate, decoder in DECODE_RULES:
        if predicate(content_type):
            return decoder(body, content_type)

    return _decode_text(body, content_type)

"""
Image payload normalization.

Callers hand us images as data-URI strings, bare base64 strings, raw bytes
or readable file objects. Every provider receives the same canonical bytes.
"""
import base64
import binascii
import io
from typing import Any, Optional

from PIL import Image, UnidentifiedImageError

from .errors import InvalidPayload


DATA_URI_PREFIX = "data:"
DEFAULT_MIME = "image/png"


def _decode_b64(s: str) -> bytes:
    compact = "".join(s.split())
    if not compact:
        raise InvalidPayload("empty base64 payload")
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayload(f"invalid base64 payload: {e}") from e


def normalize(data: Any) -> bytes:
    """Return the canonical image bytes for any supported input encoding."""
    if isinstance(data, str):
        s = data.strip()
        if s.startswith(DATA_URI_PREFIX):
            header, sep, body = s.partition(",")
            if not sep:
                raise InvalidPayload("malformed data URI: missing ','")
            if ";base64" not in header:
                raise InvalidPayload("data URI is not base64-encoded")
            return _decode_b64(body)
        return _decode_b64(s)

    if isinstance(data, (bytes, bytearray, memoryview)):
        out = bytes(data)
    elif hasattr(data, "read"):
        try:
            out = data.read()
        except (OSError, ValueError) as e:
            raise InvalidPayload(f"could not read image blob: {e}") from e
        if isinstance(out, str):
            return normalize(out)
        if not isinstance(out, (bytes, bytearray, memoryview)):
            raise InvalidPayload(f"image blob returned {type(out).__name__}, expected bytes")
        out = bytes(out)
    else:
        raise InvalidPayload(f"unsupported payload type: {type(data).__name__}")

    if not out:
        raise InvalidPayload("empty image payload")
    return out


def sniff_mime(data: bytes) -> Optional[str]:
    """Best-effort image MIME type via Pillow; None when unknown."""
    try:
        with Image.open(io.BytesIO(data)) as im:
            fmt = im.format
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    if not fmt:
        return None
    return Image.MIME.get(fmt.upper())


def encode(data: bytes, mime: Optional[str] = None) -> str:
    """Inverse of normalize(): bytes -> data URI."""
    ctype = mime or sniff_mime(data) or DEFAULT_MIME
    return f"data:{ctype};base64,{base64.b64encode(data).decode('ascii')}"

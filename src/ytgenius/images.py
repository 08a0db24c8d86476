from __future__ import annotations

import base64
import binascii
import io
import re

from PIL import Image, UnidentifiedImageError

from ytgenius.errors import InvalidInputError

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)

# Pillow format name -> mime type. MPO is the multi-picture JPEG many phone
# cameras write; it is stored and served as plain JPEG.
ACCEPTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "WEBP": "image/webp",
}

EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


def to_data_url(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


def parse_data_url(url: str) -> tuple[str, bytes]:
    """
    Split a `data:<mimetype>;base64,<encoded_data>` URL into (mime type, bytes).
    """
    m = _DATA_URL_RE.match((url or "").strip())
    if not m:
        raise InvalidInputError("expected a base64 data URL")
    try:
        content = base64.b64decode(m.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInputError(f"data URL payload is not valid base64: {exc}") from exc
    return m.group("mime"), content


def load_image(content: bytes) -> Image.Image:
    if not content:
        raise InvalidInputError("image is empty")
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidInputError("file is not a readable image") from exc
    return img


def sniff_mime_type(content: bytes) -> str:
    img = load_image(content)
    mime = ACCEPTED_FORMATS.get(img.format or "")
    if mime is None:
        raise InvalidInputError(f"unsupported image format: {img.format}")
    return mime


def extension_for(mime_type: str) -> str:
    return EXTENSIONS.get(mime_type, ".img")


def pil_to_png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()

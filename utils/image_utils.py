"""
Image processing utilities.
"""

import base64
import io
import re
from typing import Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image

DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[^;,]+)?(?:;[^,]*)?;base64,(?P<data>.*)$", re.DOTALL)

EXTENSION_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
}


def encode_base64(data: bytes) -> str:
    """Encode raw bytes as an ASCII base64 string."""
    return base64.b64encode(data).decode("utf-8")


def decode_base64(data: str) -> bytes:
    """Decode a base64 string back to raw bytes."""
    return base64.b64decode(data)


def to_data_uri(mime_type: str, data: str) -> str:
    """Build a self-contained data URI from a MIME type and base64 payload."""
    return f"data:{mime_type};base64,{data}"


def parse_data_uri(uri: str) -> Optional[Tuple[str, str]]:
    """
    Split a base64 data URI into (mime_type, base64_payload).

    Returns None when the string is not a base64 data URI.
    """
    match = DATA_URI_PATTERN.match(uri.strip())
    if not match:
        return None
    return match.group("mime") or "image/png", match.group("data")


def pil_to_bytes(image: Image.Image, fmt: str = "PNG") -> bytes:
    """Encode a PIL Image to bytes in the given format."""
    buffer = io.BytesIO()
    if fmt.upper() in ("JPEG", "JPG") and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def pixmap_to_pil(pix: fitz.Pixmap) -> Image.Image:
    """
    Convert a PyMuPDF pixmap to a PIL Image.

    CMYK and other non-RGB colorspaces are converted to RGB, alpha is dropped.
    """
    if pix.alpha:
        pix = fitz.Pixmap(pix, 0)
    if pix.n > 3:
        pix = fitz.Pixmap(fitz.csRGB, pix)

    mode = "L" if pix.n == 1 else "RGB"
    return Image.frombytes(mode, [pix.width, pix.height], pix.samples)


def render_page(page: fitz.Page, scale: float) -> Image.Image:
    """Render a full PDF page to a PIL Image at the given zoom."""
    mat = fitz.Matrix(scale, scale)
    pix = page.get_pixmap(matrix=mat)
    return pixmap_to_pil(pix)


def mime_for_extension(ext: str) -> Optional[str]:
    """Map an image file extension to a MIME type the LLM accepts natively."""
    return EXTENSION_MIME_TYPES.get(ext.lower().lstrip("."))

"""Turn a staged upload into the base64 payload the vision model accepts."""

import base64
from pathlib import Path

from models import EncodedImage

DEFAULT_MIME_TYPE = "image/jpeg"

MIME_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def mime_type_for(path: str | Path) -> str:
    """Look up the MIME type from the file extension; unknown extensions are JPEG."""
    return MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)


def encode_image(path: str | Path, image_bytes: bytes | None = None) -> EncodedImage:
    """Base64-encode an image file.

    The bytes are read from ``path`` unless passed in. No content sniffing.
    """
    if image_bytes is None:
        image_bytes = Path(path).read_bytes()

    return EncodedImage(
        data=base64.b64encode(image_bytes).decode(),
        mime_type=mime_type_for(path),
        size_bytes=len(image_bytes),
    )

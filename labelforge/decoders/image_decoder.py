from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError

from labelforge.errors import ImageDecodeError


def _open(data: bytes) -> Image.Image:
    try:
        return Image.open(io.BytesIO(data))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageDecodeError("Image dimensions could not be read.", details=str(exc)) from exc


def image_dimensions(data: bytes) -> tuple[int, int]:
    """Stored pixel size of an encoded image, without decoding pixel data."""
    with _open(data) as image:
        width, height = image.size
    if width <= 0 or height <= 0:
        raise ImageDecodeError("Image dimensions could not be read.")
    return width, height


def _has_alpha(image: Image.Image) -> bool:
    return "A" in image.getbands() or "transparency" in image.info


def decode_image(data: bytes) -> Image.Image:
    """Decode at natural resolution to RGB, or RGBA when the source has alpha.

    EXIF orientation is not applied: zone coordinates are expressed in the
    stored pixel grid.
    """
    with _open(data) as image:
        try:
            return image.convert("RGBA" if _has_alpha(image) else "RGB")
        except (OSError, ValueError) as exc:
            raise ImageDecodeError("Image could not be decoded.", details=str(exc)) from exc


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()

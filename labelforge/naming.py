from __future__ import annotations

import re
from pathlib import PurePosixPath

from labelforge.constants import IMAGE_EXTENSIONS, OUTPUT_IMAGE_DIR

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1F]')


def normalize_image_name(value: str | None) -> str:
    """Reduce an archive path or a table cell to the lookup key for an image.

    Backslashes count as separators, only the final segment is kept and the
    result is lowercased, so ``pics\\Photo 01.JPG`` and ``photo 01.jpg`` meet.
    """
    text = (value or "").strip().replace("\\", "/")
    if not text:
        return ""
    parts = [part for part in text.split("/") if part]
    if not parts:
        return ""
    return parts[-1].lower()


def image_extension(name: str) -> str:
    return PurePosixPath(name).suffix.lower()


def is_image_name(name: str) -> bool:
    return image_extension(name) in IMAGE_EXTENSIONS


def output_entry_name(index: int, width: int = 4) -> str:
    """Archive entry for the ``index``-th row (0-based); numbering starts at 1."""
    return f"{OUTPUT_IMAGE_DIR}/{index + 1:0{width}d}.png"


def sanitize_filename(value: str, fallback: str = "output") -> str:
    text = INVALID_FILENAME_CHARS.sub("_", value).strip()
    text = text.replace("/", "_").replace("\\", "_")
    text = text.strip(" .")
    return text or fallback

from __future__ import annotations

import io
from typing import Callable

import pytest
from PIL import Image


def png_bytes(width: int, height: int, color: str | tuple[int, ...] = "#FFFFFF", mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def jpeg_bytes(width: int, height: int, color: str = "#FFFFFF") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    return png_bytes


@pytest.fixture
def make_jpeg() -> Callable[..., bytes]:
    return jpeg_bytes

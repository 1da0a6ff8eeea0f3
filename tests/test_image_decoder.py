import pytest
from PIL import Image

from labelforge.decoders.image_decoder import decode_image, image_dimensions
from labelforge.errors import ImageDecodeError


def test_image_dimensions_reads_stored_size(make_png, make_jpeg) -> None:
    assert image_dimensions(make_png(31, 17)) == (31, 17)
    assert image_dimensions(make_jpeg(40, 20)) == (40, 20)


def test_garbage_bytes_are_a_decode_error() -> None:
    with pytest.raises(ImageDecodeError):
        image_dimensions(b"not an image at all")


def test_oversized_image_is_a_decode_error(make_png, monkeypatch) -> None:
    data = make_png(100, 100)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)

    with pytest.raises(ImageDecodeError):
        image_dimensions(data)
    with pytest.raises(ImageDecodeError):
        decode_image(data)

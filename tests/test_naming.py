from labelforge.naming import is_image_name, normalize_image_name, output_entry_name, sanitize_filename


def test_normalize_image_name_keeps_lowercase_final_segment() -> None:
    assert normalize_image_name("Shots/2024/Photo 01.JPG") == "photo 01.jpg"
    assert normalize_image_name(r"C:\exports\Card.PNG") == "card.png"
    assert normalize_image_name("  Photo 01.JPG  ") == "photo 01.jpg"
    assert normalize_image_name("pics//") == "pics"


def test_normalize_image_name_handles_blank_values() -> None:
    assert normalize_image_name("") == ""
    assert normalize_image_name(None) == ""
    assert normalize_image_name(" / ") == ""


def test_is_image_name_accepts_png_and_jpeg_only() -> None:
    assert is_image_name("a.png")
    assert is_image_name("a.JPG")
    assert is_image_name("a.jpeg")
    assert not is_image_name("a.gif")
    assert not is_image_name("png")


def test_output_entry_name_is_one_based_and_zero_padded() -> None:
    assert output_entry_name(0) == "images/0001.png"
    assert output_entry_name(41) == "images/0042.png"
    assert output_entry_name(9999) == "images/10000.png"


def test_sanitize_filename_replaces_separators() -> None:
    assert sanitize_filename('batch "final"/v2.zip') == "batch _final__v2.zip"
    assert sanitize_filename(" .. ") == "output"

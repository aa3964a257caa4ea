"""
Tests for SKU extraction from image filenames
"""
import pytest

from sku_linker.extraction import (
    clean_filename,
    extract_codes,
    extract_numeric_anywhere,
    is_image_filename,
    is_numeric,
    merge_codes,
    zero_padding_variants,
)
from sku_linker.models import ExtractedCode


def as_tuples(codes):
    return [(c.value, c.confidence, c.provenance) for c in codes]


def test_exact_code_filename():
    """A bare 6-digit name yields exactly one exact code"""
    assert as_tuples(extract_codes("445404.jpg")) == [("445404", 100, "exact")]


def test_extraction_is_deterministic():
    assert extract_codes("319027.319026.png") == extract_codes("319027.319026.png")


def test_multi_code_filename_order():
    codes = extract_codes("319027.319026.png")

    assert [c.value for c in codes] == ["319027", "319026"]
    assert codes[0].confidence > codes[1].confidence
    assert codes[0].provenance == "multi"


def test_five_digit_code_gets_padded_variant():
    codes = extract_codes("12345.jpg")

    assert as_tuples(codes[:2]) == [("12345", 100, "exact"), ("012345", 95, "zero_padded")]


def test_leading_zero_code_gets_trimmed_variant():
    codes = extract_codes("00445.jpg")

    assert as_tuples(codes[:2]) == [("00445", 100, "exact"), ("445", 95, "zero_padded")]
    assert "000445" in [c.value for c in codes]


def test_code_followed_by_text():
    codes = extract_codes("500123_frontview_extra_text.jpg")

    assert codes[0].value == "500123"
    assert codes[0].confidence == 85


def test_labeled_code():
    codes = extract_codes("SKU-123456-front.jpg")

    assert codes[0].value == "123456"
    assert codes[0].confidence == 80


def test_code_from_parent_folder():
    codes = extract_codes("photo.jpg", "products/445404/photo.jpg")

    assert as_tuples(codes) == [("445404", 70, "path")]


def test_digit_run_inside_folder_name():
    codes = extract_codes("photo.jpg", "shoot-500777/photo.jpg")

    assert as_tuples(codes) == [("500777", 65, "path")]


@pytest.mark.parametrize("filename", ["logo.png", "front view.jpg", "", None, "12.jpg"])
def test_no_codes(filename):
    assert extract_codes(filename) == []


def test_short_code_fuzzy_padding():
    codes = extract_codes("445.jpg")

    assert codes[0] == ExtractedCode("445", 100, "exact")
    assert ("00445", 45, "fuzzy") in as_tuples(codes)


def test_custom_strategies():
    codes = extract_codes("IMG_9999.jpg", strategies=[("numeric", extract_numeric_anywhere)])

    assert as_tuples(codes) == [("9999", 80, "pattern")]


def test_zero_padding_variants():
    assert zero_padding_variants("445") == [("0445", 50), ("00445", 45), ("000445", 40)]
    assert zero_padding_variants("12345") == [("012345", 50)]
    assert zero_padding_variants("000445") == [("00445", 50), ("0445", 50), ("445", 50)]
    assert zero_padding_variants("abc") == []


def test_merge_codes_keeps_highest_confidence():
    merged = merge_codes([
        ExtractedCode("111", 60, "pattern"),
        ExtractedCode("222", 80, "pattern"),
        ExtractedCode("111", 90, "multi"),
    ])

    assert as_tuples(merged) == [("111", 90, "multi"), ("222", 80, "pattern")]


def test_clean_filename_and_image_check():
    assert clean_filename("445404.JPEG") == "445404"
    assert clean_filename(" 445404.png ") == "445404"
    assert is_image_filename("a.webp")
    assert is_image_filename("A.TIF")
    assert not is_image_filename("notes.txt")
    assert not is_image_filename("")


def test_only_ascii_digits_form_codes():
    assert extract_codes("٤٤٥٤٠٤.jpg") == []
    assert extract_codes("SKU-٤٤٥٤٠٤.png") == []
    assert zero_padding_variants("٤٤٥") == []
    assert not is_numeric("٤٤٥")
    assert is_numeric("00445")

"""
Tests for the catalog index and match scoring
"""
from sku_linker.catalog_index import (
    CatalogIndex,
    code_variants,
    levenshtein_distance,
    score,
    score_match,
    similarity,
    strip_leading_zeros,
)
from sku_linker.models import ExtractedCode, Product


def code(value, confidence=100, provenance='exact'):
    return ExtractedCode(value, confidence, provenance)


def test_exact_match_scores_confidence():
    assert score("445404", [code("445404")]) == 100
    assert score("445404", [code("445404", 85)]) == 85


def test_zero_padding_variant_match():
    """'445' against catalog '00445' scores 0.9 x confidence"""
    value, matched, match_type = score_match("00445", [code("445")])

    assert value >= 90
    assert matched.value == "445"
    assert match_type == "variant"


def test_containment_match():
    # 100 * 0.7 * 5/6
    assert score("123456", [code("12345")]) == 58


def test_edit_distance_match():
    # similarity 5/6 > 0.8 -> 100 * 0.6 * 5/6
    assert score("123456", [code("123457")]) == 50


def test_dissimilar_codes_score_zero():
    assert score_match("123456", [code("654321")]) == (0, None, None)
    assert score("", [code("123456")]) == 0
    assert score("123456", []) == 0


def test_matching_is_case_insensitive():
    assert score("AB1234", [code("ab1234", 80)]) == 80


def test_best_code_wins():
    value, matched, match_type = score_match("319027", [code("319026", 90), code("319027", 85)])

    assert value == 85
    assert matched.value == "319027"
    assert match_type == "exact"


def test_levenshtein_and_similarity():
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("abc", "abc") == 0
    assert similarity("", "") == 1.0
    assert similarity("1234", "1235") == 0.75


def test_code_variants():
    assert code_variants("445") == {"445", "0445", "00445", "000445"}
    assert code_variants("00445") == {"00445", "000445", "445"}
    assert code_variants(" AB12 ") == {"ab12"}
    assert strip_leading_zeros("000") == "0"
    assert strip_leading_zeros("ab0") == "ab0"
    assert code_variants("٤٤٥") == {"٤٤٥"}


def test_index_lookup_with_padding():
    index = CatalogIndex.build([Product("p1", "00445"), Product("p2", "319027"), Product("p3", None)])

    assert len(index) == 2
    assert index.lookup("445") == ["p1"]
    assert index.lookup("0445") == ["p1"]
    assert index.lookup("319027") == ["p2"]
    assert index.lookup("999999") == []
    assert index.get_product("p3") is None


def test_find_best_match_counts_attempts():
    index = CatalogIndex.build([Product("p1", "319027")])
    codes = [code("319027", 90, "multi"), code("319026", 85, "multi")]

    match, attempts = index.find_best_match(codes)

    assert attempts == 2
    assert match.product_id == "p1"
    assert match.score == 90
    assert match.extracted_code.value == "319027"


def test_find_best_match_first_wins_on_tie():
    index = CatalogIndex.build([Product("p1", "111111"), Product("p2", "222222")])

    match, _ = index.find_best_match([code("111111", 80), code("222222", 80)])

    assert match.product_id == "p1"


def test_find_best_match_no_hit():
    index = CatalogIndex.build([Product("p1", "123456")])

    match, attempts = index.find_best_match([code("9999", 80), code("09999", 50)])

    assert match is None
    assert attempts == 2


def test_rebuild_replaces_state():
    index = CatalogIndex.build([Product("p1", "123456")])
    index.rebuild([Product("p2", "654321")])

    assert index.lookup("123456") == []
    assert index.lookup("654321") == ["p2"]

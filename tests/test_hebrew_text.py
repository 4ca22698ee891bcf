"""Tests for Hebrew label similarity, naming and confidence."""
import pytest

from src.processing.hebrew_text import (
    calculate_confidence,
    generate_field_name,
    hebrew_text_similarity,
    is_hebrew_text,
    is_signature_label,
    normalize_label,
)


def test_trailing_colon_is_ignored():
    assert hebrew_text_similarity("שם פרטי:", "שם פרטי") >= 0.85
    assert hebrew_text_similarity("שם פרטי:", "שם פרטי") == 1.0


def test_hebrew_sof_pasuq_is_ignored():
    assert hebrew_text_similarity("כתובת\u05c3", "כתובת") == 1.0


def test_empty_strings():
    assert hebrew_text_similarity("", "") == 1.0
    assert hebrew_text_similarity("x", "") == 0
    assert hebrew_text_similarity("", "x") == 0


def test_containment_scores_point_nine():
    assert hebrew_text_similarity("טלפון", "טלפון נייד") == 0.9
    assert hebrew_text_similarity("טלפון נייד", "טלפון") == 0.9


def test_internal_whitespace_collapses():
    assert hebrew_text_similarity("שם   משפחה", "שם משפחה") == 1.0


def test_vowel_points_are_stripped_for_second_pass():
    pointed = "\u05e9\u05c1\u05b5\u05dd"
    assert hebrew_text_similarity(pointed, "שם") == 0.95
    assert hebrew_text_similarity(pointed, "שם פרטי") == 0.85


def test_unrelated_labels_score_zero():
    assert hebrew_text_similarity("עיר", "טלפון") == 0


def test_normalize_label():
    assert normalize_label("  שם   פרטי :  ") == "שם פרטי"


def test_is_hebrew_text():
    assert is_hebrew_text("Name שם")
    assert not is_hebrew_text("Name:")
    assert not is_hebrew_text("")
    assert not is_hebrew_text(None)


@pytest.mark.parametrize("label", ["חתימה", "חתימת המזמין:", "נא לחתום - חתימת הלקוח"])
def test_signature_root_is_detected(label):
    assert is_signature_label(label)


def test_signature_root_needs_suffix():
    assert not is_signature_label("חתום")


def test_generate_field_name_prefers_longest_known_label():
    assert generate_field_name("שם פרטי:", 0) == "first_name"
    assert generate_field_name("חתימת מזמין השירות", 3) == "client_signature"
    assert generate_field_name("ת.ז", 0) == "id_number"


def test_generate_field_name_falls_back_to_index():
    assert generate_field_name("Favourite colour", 4) == "field_5"


def test_calculate_confidence_weights_and_bands():
    high = calculate_confidence(1.0, 0.9, 1.0, visual_boundary=True)
    assert high["overall"] == 1.0
    assert high["quality"] == "high"

    medium = calculate_confidence(0.9, 0.7, 1.0)
    assert medium["overall"] == pytest.approx(0.82)
    assert medium["quality"] == "medium"

    low = calculate_confidence(0.7, 0.5, 0.6)
    assert low["quality"] == "low"

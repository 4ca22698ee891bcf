"""Tests for label resolution, field positioning and OCR salvage."""
import pytest

from utils.models import (
    Box,
    Direction,
    InputType,
    LayoutType,
    OcrKeyValuePair,
    PageInfo,
    Provenance,
    SemanticField,
    SemanticPageResult,
)
from src.pipelines.field_matching import (
    find_label_in_ocr,
    match_and_position_fields,
    match_fields,
    position_field_from_label,
)
from conftest import make_line, make_mark, make_page, make_word


def _semantic(*fields: SemanticField, total: int = None) -> SemanticPageResult:
    return SemanticPageResult(total_field_count=len(fields) if total is None else total, fields=list(fields))


def _field(label: str, layout=LayoutType.UNDERLINE, input_type=InputType.TEXT, required=False, section=None):
    return SemanticField(label_text=label, layout_type=layout, input_type=input_type, required=required, section=section)


def test_end_to_end_single_underline_field(page_info):
    ocr = make_page(text_lines=[make_line("שם פרטי:", 520, 300, 60, 18)])
    semantic = _semantic(_field("שם פרטי:", required=True))

    fields = match_and_position_fields(semantic, ocr, page_info)

    assert len(fields) == 1
    f = fields[0]
    assert f.type == InputType.TEXT
    assert f.direction == Direction.RTL
    assert f.required is True
    assert 30 <= f.x <= 460
    assert f.y == 300
    assert f.name == "first_name"
    assert f.label == "שם פרטי"
    assert f.provenance == Provenance.HYBRID_MATCHED


def test_underline_fills_left_of_label_within_margin(page_info):
    label = Box(x=500, y=100, width=80, height=20)
    box = position_field_from_label(LayoutType.UNDERLINE, "שם:", label, page_info, [])
    assert page_info.width * 0.05 <= box.x <= label.x - box.width
    assert box.width >= 50


def test_underline_stops_at_row_neighbour(page_info):
    ocr = make_page(
        text_lines=[
            make_line("טלפון:", 300, 100, 60, 18),
            make_line("שם:", 500, 100, 40, 18),
        ]
    )
    fields = match_and_position_fields(_semantic(_field("טלפון:"), _field("שם:")), ocr, page_info)
    phone, name = fields
    assert phone.x == 30
    assert name.x == pytest.approx(365)
    assert name.x + name.width <= 500


def test_row_neighbour_ignores_other_rows(page_info):
    ocr = make_page(
        text_lines=[
            make_line("טלפון:", 300, 150, 60, 18),
            make_line("שם:", 500, 100, 40, 18),
        ]
    )
    fields = match_and_position_fields(_semantic(_field("טלפון:"), _field("שם:")), ocr, page_info)
    assert fields[1].x == 30


def test_row_clustering_sees_labels_resolved_later(page_info):
    ocr = make_page(
        text_lines=[
            make_line("טלפון:", 300, 100, 60, 18),
            make_line("שם:", 500, 100, 40, 18),
        ]
    )
    semantic = _semantic(_field("שם:"), _field("טלפון:"))

    in_order = match_and_position_fields(semantic, ocr, page_info)
    clustered = match_and_position_fields(semantic, ocr, page_info, row_clustering=True)

    assert in_order[0].x == 30
    assert clustered[0].x == pytest.approx(365)


def test_ltr_label_fills_to_the_right(page_info):
    ocr = make_page(text_lines=[make_line("Name:", 50, 400, 40, 15)])
    fields = match_and_position_fields(_semantic(_field("Name:")), ocr, page_info)
    f = fields[0]
    assert f.direction == Direction.LTR
    assert f.x == 95
    assert f.width == 180


def test_box_with_title_sits_above_label(page_info):
    label = Box(x=200, y=400, width=60, height=15)
    box = position_field_from_label(LayoutType.BOX_WITH_TITLE, "עיר", label, page_info, [])
    assert box == Box(x=185, y=420, width=90, height=35)


def test_box_with_title_has_minimum_width(page_info):
    label = Box(x=200, y=400, width=20, height=15)
    box = position_field_from_label(LayoutType.BOX_WITH_TITLE, "עיר", label, page_info, [])
    assert box.width == 80


def test_digit_boxes_capped_and_left_of_label(page_info):
    label = Box(x=400, y=500, width=50, height=18)
    box = position_field_from_label(LayoutType.DIGIT_BOXES, "ת.ז", label, page_info, [])
    assert box.width == 200
    assert box.x == 195
    assert box.x >= page_info.width * 0.05
    assert box.height == 22


def test_digit_boxes_clipped_to_margin(page_info):
    label = Box(x=150, y=500, width=50, height=18)
    box = position_field_from_label(LayoutType.DIGIT_BOXES, "ת.ז", label, page_info, [])
    assert box.x == 30
    assert box.width == 115


def test_digit_boxes_near_margin_stay_left_of_label(page_info):
    label = Box(x=60, y=500, width=40, height=18)
    box = position_field_from_label(LayoutType.DIGIT_BOXES, "ת.ז", label, page_info, [])
    assert box.x == 30
    assert box.width == 25
    assert box.right <= label.x


def test_table_cell_reuses_label_box_with_minimum(page_info):
    label = Box(x=100, y=200, width=30, height=10)
    box = position_field_from_label(LayoutType.TABLE_CELL, "סכום", label, page_info, [])
    assert box == Box(x=100, y=200, width=50, height=18)


def test_unknown_layout_uses_fixed_width(page_info):
    label = Box(x=400, y=200, width=40, height=18)
    box = position_field_from_label(None, "הערות", label, page_info, [])
    assert box == Box(x=250, y=200, width=140, height=20)


def test_selection_mark_takes_nearest_mark_geometry(page_info):
    near = make_mark(450, 600, size=11.5, confidence=0.93)
    far = make_mark(100, 100)
    ocr = make_page(
        text_lines=[make_line("מאשר", 470, 600, 40, 15)],
        selection_marks=[far, near],
    )
    semantic = _semantic(_field("מאשר", layout=LayoutType.SELECTION_MARK, input_type=InputType.CHECKBOX))

    fields = match_and_position_fields(semantic, ocr, page_info)

    claimed = fields[0]
    assert claimed.box == near.box
    assert claimed.type == InputType.CHECKBOX
    assert claimed.confidence == 0.93
    assert claimed.provenance == Provenance.SELECTION_MARK

    # The far mark was not claimed, so it is salvaged as an unlabeled checkbox
    assert len(fields) == 2
    assert fields[1].provenance == Provenance.SELECTION_MARK_UNMATCHED
    assert fields[1].label is None


def test_two_labels_cannot_claim_one_mark(page_info):
    ocr = make_page(
        text_lines=[make_line("כן", 470, 600, 20, 15), make_line("לא", 470, 570, 20, 15)],
        selection_marks=[make_mark(450, 600)],
    )
    semantic = _semantic(
        _field("כן", layout=LayoutType.SELECTION_MARK, input_type=InputType.RADIO),
        _field("לא", layout=LayoutType.SELECTION_MARK, input_type=InputType.RADIO),
    )
    fields = match_and_position_fields(semantic, ocr, page_info)

    assert [f.type for f in fields] == [InputType.RADIO, InputType.RADIO]
    assert fields[0].provenance == Provenance.SELECTION_MARK
    assert fields[1].provenance == Provenance.HYBRID_MATCHED


def test_signature_label_overrides_reported_type(page_info):
    ocr = make_page(text_lines=[make_line("חתימת המזמין:", 450, 80, 70, 18)])
    semantic = _semantic(_field("חתימת המזמין:", layout=LayoutType.TABLE_CELL, input_type=InputType.TEXT))

    f = match_and_position_fields(semantic, ocr, page_info)[0]

    assert f.type == InputType.SIGNATURE
    assert f.height >= 40
    assert f.width >= 120
    assert f.name == "client_signature"


def test_signature_wins_over_selection_mark(page_info):
    ocr = make_page(
        text_lines=[make_line("חתימה", 450, 80, 40, 18)],
        selection_marks=[make_mark(400, 80)],
    )
    semantic = _semantic(_field("חתימה", layout=LayoutType.SELECTION_MARK, input_type=InputType.CHECKBOX))
    fields = match_and_position_fields(semantic, ocr, page_info)
    assert fields[0].type == InputType.SIGNATURE


def test_unmatched_label_is_dropped_and_reported(page_info):
    ocr = make_page(text_lines=[make_line("עיר:", 500, 300, 30, 18)])
    result = match_fields(_semantic(_field("עיר:"), _field("מספר רישוי")), ocr, page_info)

    assert [f.label for f in result.fields] == ["עיר"]
    assert result.unmatched_labels == ["מספר רישוי"]
    assert result.matched_count == 1


def test_word_level_match_when_no_line_matches():
    ocr = make_page(
        text_lines=[make_line("פרטים אישיים", 300, 700, 100, 18)],
        words=[make_word("מיקוד:", 200, 300, 35, 15)],
    )
    match = find_label_in_ocr("מיקוד", ocr)
    assert match.tier == "word"
    assert match.box == Box(x=200, y=300, width=35, height=15)


def test_first_matching_line_wins():
    ocr = make_page(
        text_lines=[make_line("שם משפחה", 400, 500, 60, 18), make_line("שם", 400, 400, 20, 18)],
    )
    match = find_label_in_ocr("שם", ocr)
    assert match.box.y == 500
    assert match.score == 0.9


def test_kv_pair_without_matching_field_is_salvaged(page_info):
    kv = OcrKeyValuePair(
        key="עיר",
        key_box=Box(x=400, y=300, width=30, height=15),
        value_box=Box(x=200, y=300, width=150, height=20),
        confidence=0.77,
    )
    ocr = make_page(kv_pairs=[kv])
    fields = match_and_position_fields(_semantic(), ocr, page_info)

    assert len(fields) == 1
    f = fields[0]
    assert f.provenance == Provenance.KV_VALUE
    assert f.label == "עיר"
    assert f.name == "city"
    assert f.box == kv.value_box
    assert f.direction == Direction.RTL
    assert f.confidence == 0.77


def test_kv_pair_coinciding_with_emitted_field_is_skipped(page_info):
    kv = OcrKeyValuePair(
        key="שם פרטי",
        key_box=Box(x=520, y=300, width=60, height=18),
        value_box=Box(x=40, y=305, width=400, height=20),
        confidence=0.8,
    )
    ocr = make_page(text_lines=[make_line("שם פרטי:", 520, 300, 60, 18)], kv_pairs=[kv])
    fields = match_and_position_fields(_semantic(_field("שם פרטי:")), ocr, page_info)

    assert [f.provenance for f in fields] == [Provenance.HYBRID_MATCHED]


def test_coordinates_are_rounded(page_info):
    ocr = make_page(text_lines=[make_line("עיר:", 500.123, 300.456, 30.789, 18)])
    f = match_and_position_fields(_semantic(_field("עיר:", layout=LayoutType.TABLE_CELL)), ocr, page_info)[0]
    assert (f.x, f.y, f.width) == (500.12, 300.46, 50)


def test_matched_confidence_reflects_label_score(page_info):
    ocr = make_page(
        text_lines=[make_line("עיר:", 500, 300, 30, 18), make_line("טלפון נייד", 500, 250, 60, 18)],
    )
    exact, partial = match_and_position_fields(_semantic(_field("עיר:"), _field("טלפון")), ocr, page_info)
    assert exact.confidence > partial.confidence

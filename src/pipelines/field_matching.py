"""
Label matching and field positioning.

Three passes per page:

1. Resolve every semantic label to an OCR box (line similarity, then word
   similarity, then raw containment). Unresolved labels are dropped.
2. Place the input area relative to the label box according to the field's
   layout type, right-to-left unless the label has no Hebrew.
3. Salvage OCR key/value pairs and selection marks that no semantic field
   accounted for.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import numpy as np

from utils.models import (
    Box,
    Direction,
    ExtractedField,
    InputType,
    LayoutType,
    OcrPageData,
    OcrSelectionMark,
    PageInfo,
    Provenance,
    SemanticField,
    SemanticPageResult,
)
from src.processing.hebrew_text import (
    LABEL_MATCH_THRESHOLD,
    calculate_confidence,
    generate_field_name,
    hebrew_text_similarity,
    is_hebrew_text,
    is_signature_label,
    normalize_label,
    strip_colon,
)

logger = logging.getLogger(__name__)

MARGIN_RATIO = 0.05
ROW_TOLERANCE = 8.0
NEIGHBOR_GAP = 5.0
LABEL_GAP = 3.0
MIN_FILL_WIDTH = 50.0
FILL_HEIGHT = 20.0
LTR_MAX_WIDTH = 180.0
BOX_TITLE_HEIGHT = 35.0
BOX_TITLE_MIN_WIDTH = 80.0
DIGIT_BOXES_MAX_WIDTH = 200.0
DIGIT_BOXES_HEIGHT = 22.0
TABLE_CELL_MIN_WIDTH = 50.0
TABLE_CELL_MIN_HEIGHT = 18.0
DEFAULT_WIDTH = 140.0
DEFAULT_OFFSET = 150.0
MARK_SIZE = 15.0
SIGNATURE_MIN_HEIGHT = 40.0
SIGNATURE_MIN_WIDTH = 120.0
# Salvaged key/value boxes closer than this to an emitted field are duplicates
KV_DUPLICATE_DX = 20.0
KV_DUPLICATE_DY = 10.0
RAW_CONTAINMENT_SCORE = 0.7

POSITION_CERTAINTY: Dict[Optional[LayoutType], float] = {
    LayoutType.UNDERLINE: 0.7,
    LayoutType.TITLE_RIGHT: 0.7,
    LayoutType.BOX_WITH_TITLE: 0.6,
    LayoutType.DIGIT_BOXES: 0.65,
    LayoutType.TABLE_CELL: 0.9,
    None: 0.5,
}


@dataclass(frozen=True)
class LabelMatch:
    """A semantic field resolved to an OCR box."""
    field: SemanticField
    box: Box
    content: str
    score: float
    tier: str


@dataclass
class PageMatch:
    fields: List[ExtractedField] = field(default_factory=list)
    unmatched_labels: List[str] = field(default_factory=list)
    matched_count: int = 0


def find_label_in_ocr(label_text: str, ocr_page: OcrPageData) -> Optional[LabelMatch]:
    """
    Resolve a label to an OCR line or word. First tier that hits wins.

    Returns:
        LabelMatch (with a placeholder field) or None
    """
    placeholder = SemanticField(label_text=label_text)

    for line in ocr_page.text_lines:
        score = hebrew_text_similarity(label_text, line.content)
        if score >= LABEL_MATCH_THRESHOLD:
            return LabelMatch(placeholder, line.box, line.content, score, "line")

    for word in ocr_page.words:
        score = hebrew_text_similarity(label_text, word.content)
        if score >= LABEL_MATCH_THRESHOLD:
            return LabelMatch(placeholder, word.box, word.content, score, "word")

    bare_label = strip_colon(label_text)
    if not bare_label.strip():
        return None
    for line in ocr_page.text_lines:
        bare_line = strip_colon(line.content)
        if not bare_line.strip():
            continue
        if bare_label in line.content or bare_line in bare_label:
            return LabelMatch(placeholder, line.box, line.content, RAW_CONTAINMENT_SCORE, "containment")

    return None


def _direction(text: Optional[str]) -> Direction:
    return Direction.RTL if is_hebrew_text(text) else Direction.LTR


def _row_left_boundary(label_box: Box, neighbors: List[Box], left_margin: float) -> float:
    """Right edge of the closest label to the left on the same row, else the margin."""
    boundary = left_margin
    for other in neighbors:
        if abs(other.y - label_box.y) >= ROW_TOLERANCE:
            continue
        right_edge = other.right
        if right_edge < label_box.x and right_edge > boundary:
            boundary = right_edge + NEIGHBOR_GAP
    return boundary


def position_field_from_label(
    layout_type: Optional[LayoutType],
    label_text: str,
    label_box: Box,
    page_info: PageInfo,
    neighbors: List[Box],
) -> Box:
    """Compute the input box for a non-selection-mark field."""
    left_margin = page_info.width * MARGIN_RATIO
    right_margin = page_info.width * (1 - MARGIN_RATIO)
    rtl = is_hebrew_text(label_text)

    if layout_type in (LayoutType.UNDERLINE, LayoutType.TITLE_RIGHT):
        if rtl:
            x = _row_left_boundary(label_box, neighbors, left_margin)
            width = max(label_box.x - x - LABEL_GAP, MIN_FILL_WIDTH)
            return Box(x=x, y=label_box.y, width=width, height=FILL_HEIGHT)
        x = label_box.right + NEIGHBOR_GAP
        width = max(min(right_margin - x, LTR_MAX_WIDTH), MIN_FILL_WIDTH)
        return Box(x=x, y=label_box.y, width=width, height=FILL_HEIGHT)

    if layout_type == LayoutType.BOX_WITH_TITLE:
        width = max(label_box.width * 1.5, BOX_TITLE_MIN_WIDTH)
        centered_x = label_box.x + label_box.width / 2 - width / 2
        return Box(
            x=max(left_margin, centered_x),
            y=label_box.top + NEIGHBOR_GAP,
            width=width,
            height=BOX_TITLE_HEIGHT,
        )

    if layout_type == LayoutType.DIGIT_BOXES:
        if rtl:
            available = label_box.x - left_margin - NEIGHBOR_GAP
            width = max(min(available, DIGIT_BOXES_MAX_WIDTH), 0.0)
            return Box(
                x=max(left_margin, label_box.x - width - NEIGHBOR_GAP),
                y=label_box.y,
                width=width,
                height=DIGIT_BOXES_HEIGHT,
            )
        return Box(
            x=label_box.right + NEIGHBOR_GAP,
            y=label_box.y,
            width=DIGIT_BOXES_MAX_WIDTH,
            height=DIGIT_BOXES_HEIGHT,
        )

    if layout_type == LayoutType.TABLE_CELL:
        return Box(
            x=label_box.x,
            y=label_box.y,
            width=max(label_box.width, TABLE_CELL_MIN_WIDTH),
            height=max(label_box.height, TABLE_CELL_MIN_HEIGHT),
        )

    if layout_type == LayoutType.SELECTION_MARK:
        # No OCR mark left to claim
        return Box(x=label_box.x, y=label_box.y, width=MARK_SIZE, height=MARK_SIZE)

    if rtl:
        return Box(
            x=max(left_margin, label_box.x - DEFAULT_OFFSET),
            y=label_box.y,
            width=DEFAULT_WIDTH,
            height=FILL_HEIGHT,
        )
    return Box(x=label_box.right + NEIGHBOR_GAP, y=label_box.y, width=DEFAULT_WIDTH, height=FILL_HEIGHT)


def nearest_selection_mark(
    label_box: Box,
    marks: List[OcrSelectionMark],
    claimed: Set[int],
) -> Optional[int]:
    """Index of the closest unclaimed mark by Manhattan distance, or None."""
    candidates = [i for i in range(len(marks)) if i not in claimed]
    if not candidates:
        return None
    origins = np.array([[marks[i].box.x, marks[i].box.y] for i in candidates], dtype=float)
    distances = np.abs(origins - np.array([label_box.x, label_box.y])).sum(axis=1)
    return candidates[int(np.argmin(distances))]


def _resolve_type(semantic: SemanticField, signature: bool) -> InputType:
    if signature:
        return InputType.SIGNATURE
    if semantic.input_type in (InputType.CHECKBOX, InputType.RADIO, InputType.DROPDOWN):
        return semantic.input_type
    return InputType.TEXT


def _rounded_field(box: Box, **kwargs) -> ExtractedField:
    box = box.rounded()
    return ExtractedField(x=box.x, y=box.y, width=box.width, height=box.height, **kwargs)


def match_fields(
    semantic_result: SemanticPageResult,
    ocr_page: OcrPageData,
    page_info: PageInfo,
    row_clustering: bool = False,
) -> PageMatch:
    """
    Match semantic fields to OCR geometry and salvage leftovers.

    Args:
        semantic_result: Fields named by the model for this page
        ocr_page: OCR primitives for this page
        page_info: Page geometry (points)
        row_clustering: Use every resolved label on the page as a row
            neighbour instead of only the labels resolved before it

    Returns:
        PageMatch with emitted fields and the labels that could not be resolved
    """
    result = PageMatch()
    page_number = ocr_page.page_number

    # Pass 1: label resolution
    matches: List[LabelMatch] = []
    for semantic in semantic_result.fields:
        found = find_label_in_ocr(semantic.label_text, ocr_page)
        if found is None:
            result.unmatched_labels.append(semantic.label_text)
            logger.warning(
                "UNMATCHED: '%s' (%s) on page %d, no OCR match",
                semantic.label_text,
                semantic.layout_type.value if semantic.layout_type else "unknown",
                page_number,
            )
            continue
        matches.append(LabelMatch(semantic, found.box, found.content, found.score, found.tier))
    result.matched_count = len(matches)
    all_label_boxes = [m.box for m in matches]

    # Pass 2: geometric placement
    claimed_marks: Set[int] = set()
    for index, match in enumerate(matches):
        try:
            extracted = _place_match(
                match,
                ocr_page,
                page_info,
                all_label_boxes if row_clustering else all_label_boxes[:index],
                claimed_marks,
                len(result.fields),
            )
        except Exception as exc:
            logger.warning("Could not place '%s' on page %d: %s", match.field.label_text, page_number, exc)
            continue
        result.fields.append(extracted)

    # Pass 3: salvage
    result.fields.extend(salvage_ocr_fields(result.fields, ocr_page, claimed_marks))

    logger.info(
        "Page %d: %d matched, %d unmatched, %d total fields",
        page_number,
        result.matched_count,
        len(result.unmatched_labels),
        len(result.fields),
    )
    return result


def _place_match(
    match: LabelMatch,
    ocr_page: OcrPageData,
    page_info: PageInfo,
    neighbors: List[Box],
    claimed_marks: Set[int],
    field_index: int,
) -> ExtractedField:
    semantic = match.field
    signature = (
        semantic.input_type == InputType.SIGNATURE
        or is_signature_label(semantic.label_text)
        or is_signature_label(match.content)
    )
    common = dict(
        name=generate_field_name(semantic.label_text, field_index),
        label=normalize_label(semantic.label_text),
        page_number=ocr_page.page_number,
        direction=_direction(semantic.label_text),
        required=semantic.required,
        section_name=semantic.section,
    )

    if semantic.layout_type == LayoutType.SELECTION_MARK and not signature:
        mark_index = nearest_selection_mark(match.box, ocr_page.selection_marks, claimed_marks)
        if mark_index is not None:
            claimed_marks.add(mark_index)
            mark = ocr_page.selection_marks[mark_index]
            logger.debug("'%s' claimed selection mark at (%.1f, %.1f)", semantic.label_text, mark.box.x, mark.box.y)
            return _rounded_field(
                mark.box,
                type=InputType.RADIO if semantic.input_type == InputType.RADIO else InputType.CHECKBOX,
                confidence=mark.confidence,
                provenance=Provenance.SELECTION_MARK,
                **common,
            )

    box = position_field_from_label(semantic.layout_type, semantic.label_text, match.box, page_info, neighbors)
    if signature:
        box = Box(
            x=box.x,
            y=box.y,
            width=max(box.width, SIGNATURE_MIN_WIDTH),
            height=max(box.height, SIGNATURE_MIN_HEIGHT),
        )

    field_type = _resolve_type(semantic, signature)
    if semantic.layout_type == LayoutType.SELECTION_MARK and field_type == InputType.TEXT:
        field_type = InputType.CHECKBOX

    confidence = calculate_confidence(
        label_match=match.score,
        position_certainty=POSITION_CERTAINTY.get(semantic.layout_type, 0.5),
        type_certainty=1.0 if semantic.layout_type else 0.6,
        visual_boundary=semantic.layout_type == LayoutType.TABLE_CELL,
    )

    logger.debug(
        "'%s' (%s) -> %s at x=%.1f, y=%.1f, w=%.1f [%s match]",
        semantic.label_text,
        semantic.layout_type.value if semantic.layout_type else "default",
        field_type.value,
        box.x,
        box.y,
        box.width,
        match.tier,
    )
    return _rounded_field(
        box,
        type=field_type,
        confidence=confidence["overall"],
        provenance=Provenance.HYBRID_MATCHED,
        **common,
    )


def salvage_ocr_fields(
    emitted: List[ExtractedField],
    ocr_page: OcrPageData,
    claimed_marks: Set[int],
) -> List[ExtractedField]:
    """Turn OCR key/value pairs and unclaimed selection marks into fields."""
    salvaged: List[ExtractedField] = []
    next_index = len(emitted)

    for kv in ocr_page.kv_pairs:
        duplicate = any(
            abs(f.x - kv.value_box.x) < KV_DUPLICATE_DX and abs(f.y - kv.value_box.y) < KV_DUPLICATE_DY
            for f in emitted + salvaged
        )
        if duplicate:
            continue
        salvaged.append(
            _rounded_field(
                kv.value_box,
                type=InputType.TEXT,
                name=generate_field_name(kv.key, next_index),
                label=kv.key,
                page_number=ocr_page.page_number,
                direction=_direction(kv.key),
                required=False,
                confidence=kv.confidence,
                provenance=Provenance.KV_VALUE,
            )
        )
        next_index += 1

    for index, mark in enumerate(ocr_page.selection_marks):
        if index in claimed_marks:
            continue
        salvaged.append(
            _rounded_field(
                Box(
                    x=mark.box.x,
                    y=mark.box.y,
                    width=max(mark.box.width, MARK_SIZE),
                    height=max(mark.box.height, MARK_SIZE),
                ),
                type=InputType.CHECKBOX,
                name=f"checkbox_{next_index + 1}",
                page_number=ocr_page.page_number,
                direction=Direction.LTR,
                required=False,
                confidence=mark.confidence,
                provenance=Provenance.SELECTION_MARK_UNMATCHED,
            )
        )
        next_index += 1

    if salvaged:
        logger.debug("Page %d: salvaged %d OCR fields", ocr_page.page_number, len(salvaged))
    return salvaged


def match_and_position_fields(
    semantic_result: SemanticPageResult,
    ocr_page: OcrPageData,
    page_info: PageInfo,
    row_clustering: bool = False,
) -> List[ExtractedField]:
    """Positioned fields for one page."""
    return match_fields(semantic_result, ocr_page, page_info, row_clustering).fields

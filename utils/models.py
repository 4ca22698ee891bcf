"""
Data models for the hybrid field-extraction pipeline.

All geometry is expressed in PDF points with the origin at the bottom-left
corner of the page and y increasing upward.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any
from enum import Enum


class LayoutType(str, Enum):
    """Visual layout pattern of a field as reported by the semantic model."""
    UNDERLINE = "underline"
    BOX_WITH_TITLE = "box_with_title"
    DIGIT_BOXES = "digit_boxes"
    TABLE_CELL = "table_cell"
    TITLE_RIGHT = "title_right"
    SELECTION_MARK = "selection_mark"


class InputType(str, Enum):
    """Kind of control a field captures."""
    TEXT = "text"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SIGNATURE = "signature"
    DROPDOWN = "dropdown"


class Direction(str, Enum):
    LTR = "ltr"
    RTL = "rtl"


class Provenance(str, Enum):
    """Which pass produced an extracted field."""
    HYBRID_MATCHED = "hybrid_matched"
    SELECTION_MARK = "azure_selection_mark"
    KV_VALUE = "azure_kv_value"
    SELECTION_MARK_UNMATCHED = "azure_selection_mark_unmatched"
    FALLBACK = "azure_fallback"


@dataclass(frozen=True)
class Box:
    """Axis-aligned box in PDF points (bottom-left origin)."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y + self.height

    def rounded(self) -> "Box":
        """Copy with every coordinate rounded to 2 decimals."""
        return Box(
            x=round(self.x, 2),
            y=round(self.y, 2),
            width=round(self.width, 2),
            height=round(self.height, 2),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


# Returned whenever provider geometry is unusable
DEFAULT_BOX = Box(x=0.0, y=0.0, width=50.0, height=20.0)


@dataclass(frozen=True)
class PageInfo:
    """Page geometry in reading orientation (rotation already applied)."""
    page_number: int
    width: float
    height: float

    def to_dict(self) -> Dict[str, Any]:
        return {"pageNumber": self.page_number, "width": self.width, "height": self.height}


# A4 in points, used when page geometry cannot be read
A4_WIDTH = 595.0
A4_HEIGHT = 842.0


def default_page_info(page_number: int = 1) -> PageInfo:
    return PageInfo(page_number=page_number, width=A4_WIDTH, height=A4_HEIGHT)


@dataclass(frozen=True)
class OcrTextLine:
    content: str
    box: Box


@dataclass(frozen=True)
class OcrWord:
    content: str
    box: Box


@dataclass(frozen=True)
class OcrSelectionMark:
    state: str
    box: Box
    confidence: float


@dataclass(frozen=True)
class OcrTableCell:
    row_index: int
    column_index: int
    content: str
    box: Box
    kind: Optional[str] = None


@dataclass(frozen=True)
class OcrTable:
    row_count: int
    column_count: int
    cells: List[OcrTableCell] = field(default_factory=list)


@dataclass(frozen=True)
class OcrKeyValuePair:
    """Key/value association; only built when both sides carry geometry."""
    key: str
    key_box: Box
    value_box: Box
    confidence: float


@dataclass(frozen=True)
class OcrPageData:
    """Canonical OCR primitives for one page."""
    page_number: int
    width: float
    height: float
    text_lines: List[OcrTextLine] = field(default_factory=list)
    words: List[OcrWord] = field(default_factory=list)
    selection_marks: List[OcrSelectionMark] = field(default_factory=list)
    tables: List[OcrTable] = field(default_factory=list)
    kv_pairs: List[OcrKeyValuePair] = field(default_factory=list)

    @property
    def page_info(self) -> PageInfo:
        return PageInfo(page_number=self.page_number, width=self.width, height=self.height)


@dataclass(frozen=True)
class SemanticField:
    """Field named by the semantic model; carries no geometry."""
    label_text: str
    layout_type: Optional[LayoutType] = None
    input_type: InputType = InputType.TEXT
    section: Optional[str] = None
    required: bool = False


@dataclass(frozen=True)
class SemanticPageResult:
    total_field_count: int = 0
    fields: List[SemanticField] = field(default_factory=list)
    # The model replied but nothing parseable came back
    parse_failed: bool = False


@dataclass(frozen=True)
class ExtractedField:
    """Final positioned field handed to the PDF writer and the editor."""
    type: InputType
    name: str
    x: float
    y: float
    width: float
    height: float
    page_number: int
    direction: Direction
    required: bool
    confidence: float
    provenance: Provenance
    label: Optional[str] = None
    section_name: Optional[str] = None

    @property
    def box(self) -> Box:
        return Box(x=self.x, y=self.y, width=self.width, height=self.height)

    def to_dict(self) -> Dict[str, Any]:
        """Convert field to the camelCase wire shape."""
        data = {
            "type": self.type.value,
            "name": self.name,
            "label": self.label,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "pageNumber": self.page_number,
            "direction": self.direction.value,
            "required": self.required,
            "confidence": self.confidence,
            "_source": self.provenance.value,
        }
        if self.section_name:
            data["sectionName"] = self.section_name
        return data


@dataclass
class PageOutcome:
    """Per-page result collected before merging."""
    page_number: int
    fields: List[ExtractedField] = field(default_factory=list)
    expected_count: int = 0
    unmatched_labels: List[str] = field(default_factory=list)
    fell_back: bool = False

    @property
    def gap(self) -> int:
        return max(self.expected_count - len(self.fields), 0)


@dataclass
class ExtractionResult:
    """Aggregated output of one document extraction."""
    fields: List[ExtractedField] = field(default_factory=list)
    page_dimensions: List[PageInfo] = field(default_factory=list)
    fields_per_page: Dict[int, int] = field(default_factory=dict)
    gaps: Dict[int, int] = field(default_factory=dict)
    debug: Dict[str, Any] = field(default_factory=dict)
    source: str = "hybrid_azure_gemini"
    form_metadata: Dict[str, str] = field(default_factory=lambda: {
        "companyName": "Unknown",
        "formName": "Document",
        "confidence": "medium",
    })

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "totalFields": len(self.fields),
            "fieldsPerPage": dict(self.fields_per_page),
            "pageCount": len(self.page_dimensions),
            "gaps": dict(self.gaps),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "fields": [f.to_dict() for f in self.fields],
            "guidanceTexts": [],
            "anchorPoints": [],
            "formMetadata": dict(self.form_metadata),
            "pageDimensions": [p.to_dict() for p in self.page_dimensions],
            "stats": self.stats,
            "_source": self.source,
            "_debug": dict(self.debug),
        }

"""
Semantic field identification.

The model sees exactly one page of the document together with the OCR text of
that page, and names the fillable fields on it. It reports no geometry; the
matching stage resolves every label back to OCR boxes.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from utils.models import (
    InputType,
    LayoutType,
    OcrPageData,
    SemanticField,
    SemanticPageResult,
)
from src.processing.geometry import extract_single_page
from src.vlm.gemini_client import GeminiClient

logger = logging.getLogger(__name__)

CODE_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
CODE_FENCE_END = re.compile(r"\s*```$")
FIELDS_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\"fields\"[\s\S]*\}")
# Longest response the regex rescue will scan
MAX_RESCUE_CHARS = 200_000


class SemanticFieldPayload(BaseModel):
    """One entry of the model's ``fields`` array."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    label_text: str = Field(alias="labelText", min_length=1)
    field_type: Optional[LayoutType] = Field(default=None, alias="fieldType")
    input_type: InputType = Field(default=InputType.TEXT, alias="inputType")
    section: Optional[str] = None
    required: bool = False

    @field_validator("field_type", mode="before")
    @classmethod
    def _unknown_layout(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip().lower() in {t.value for t in LayoutType}:
            return value.strip().lower()
        return None

    @field_validator("input_type", mode="before")
    @classmethod
    def _unknown_input(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in {t.value for t in InputType}:
            return value.strip().lower()
        return InputType.TEXT.value

    @field_validator("required", mode="before")
    @classmethod
    def _loose_bool(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"true", "yes", "1"}
        return bool(value)

    def to_field(self) -> SemanticField:
        return SemanticField(
            label_text=self.label_text,
            layout_type=self.field_type,
            input_type=self.input_type,
            section=self.section or None,
            required=self.required,
        )


@dataclass(frozen=True)
class ParseOutcome:
    """Result of parsing model text: either a JSON object or an error."""
    ok: bool
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = CODE_FENCE_START.sub("", text)
        text = CODE_FENCE_END.sub("", text)
    return text.strip()


def parse_model_json(text: str) -> ParseOutcome:
    """
    Parse the model's reply into a JSON object.

    Strict parse first; when that does not give an object, rescue the largest
    ``{...}`` span that mentions ``"fields"``. Never raises.
    """
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        return ParseOutcome(ok=False, error="empty response")

    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return ParseOutcome(ok=True, payload=parsed)
    except json.JSONDecodeError:
        pass

    match = FIELDS_OBJECT_PATTERN.search(cleaned[:MAX_RESCUE_CHARS])
    if not match:
        return ParseOutcome(ok=False, error="no JSON object with fields")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        return ParseOutcome(ok=False, error=f"rescued span is not JSON: {exc}")
    if not isinstance(parsed, dict):
        return ParseOutcome(ok=False, error="rescued span is not an object")
    return ParseOutcome(ok=True, payload=parsed)


def payload_to_result(payload: Dict[str, Any]) -> SemanticPageResult:
    """Validate each field entry on its own; bad entries are skipped."""
    fields: List[SemanticField] = []
    raw_fields = payload.get("fields")
    if not isinstance(raw_fields, list):
        raw_fields = []

    for entry in raw_fields:
        try:
            fields.append(SemanticFieldPayload.model_validate(entry).to_field())
        except ValidationError as exc:
            logger.debug("Skipping malformed field entry %r: %s", entry, exc)

    try:
        total = int(payload.get("totalFieldCount", len(fields)))
    except (TypeError, ValueError):
        total = len(fields)

    return SemanticPageResult(total_field_count=max(total, 0), fields=fields)


def build_prompt(ocr_page: OcrPageData) -> str:
    """Build the field-identification prompt for one page."""
    text_list = "\n".join(f'  [{i + 1}] "{line.content}"' for i, line in enumerate(ocr_page.text_lines))

    if ocr_page.tables:
        table_info = "\n".join(
            f"  Table {i + 1}: {t.row_count} rows x {t.column_count} cols"
            for i, t in enumerate(ocr_page.tables)
        )
    else:
        table_info = "  (no tables detected)"

    if ocr_page.selection_marks:
        selection_info = f"  {len(ocr_page.selection_marks)} selection marks (checkboxes/radio buttons)"
    else:
        selection_info = "  (no selection marks detected)"

    return f"""You are analyzing a Hebrew RTL form page. I have already extracted all text using OCR.
Your job is to identify WHAT form fields exist on this page, not WHERE they are.

OCR TEXT FOUND ON THIS PAGE:
{text_list}

TABLES:
{table_info}

SELECTION MARKS:
{selection_info}

For EACH fillable form field you can see, provide:
1. "labelText": the exact Hebrew label text associated with this field
   - MUST match one of the OCR texts above (copy exactly, do not invent labels)
   - For fields without labels, use a descriptive name
2. "fieldType": one of:
   - "underline": fill field with underline (קו למילוי)
   - "box_with_title": fill box with title below (קופסא + כותרת)
   - "digit_boxes": boxes for individual digits (קופסאות ספרות)
   - "table_cell": input cell within a table (תא בטבלה)
   - "title_right": title on right with fill area to left (כותרת מימין)
   - "selection_mark": checkbox or radio button (סימון בחירה)
3. "inputType": "text" | "checkbox" | "radio" | "signature" | "dropdown"
4. "section": logical section name (Hebrew)
5. "required": true/false

CRITICAL RULES:
- Identify EVERY fillable field on the page, do not skip any
- Look at the ENTIRE page including header, body, footer, and bottom areas
- For digit boxes (phone, ID): count as ONE field with fieldType "digit_boxes"
- For table cells that expect user input: each is a separate field
- Selection marks (checkboxes/radio) should be identified with their nearby label text
- The form is in Hebrew (right-to-left). Labels are on the RIGHT side.

SIGNATURE FIELD DETECTION (VERY IMPORTANT):
- Any label containing "חתימה" or "חתימת" MUST have inputType: "signature"
  Examples: "חתימת מזמין השירות", "חתימת המזמין", "חתימת נותן השירות",
  "חתימה", "חתימת הלקוח", "חתימת מורשה חתימה", "חתימת מסמך השירות"
- Signature areas are visually larger blank spaces for handwritten signatures
- When a label like "חתימת מזמין השירות" appears, create TWO fields:
  1. The signature field (inputType: "signature") for the actual signature area
  2. If there's also a name/text area nearby (e.g., line for printed name),
     add it as a separate text field

FIELD DETECTION TIPS:
- Blank lines, underlines, or empty spaces next to labels are fillable fields
- Fields at the bottom of the page (dates, signatures) are often missed, check carefully
- "תאריך" (date) fields should be inputType: "text"
- Return "totalFieldCount" with the total number of fields you identified

RETURN ONLY VALID JSON:
{{
  "totalFieldCount": <number>,
  "fields": [
    {{
      "labelText": "<exact OCR text>",
      "fieldType": "<type>",
      "inputType": "<type>",
      "section": "<section name>",
      "required": <true/false>
    }}
  ]
}}"""


class FieldIdentifier:
    """Asks the semantic model which fields exist on a page."""

    def __init__(self, client: GeminiClient):
        self.client = client

    def identify(self, document_b64: str, ocr_page: OcrPageData) -> SemanticPageResult:
        """
        Identify fields on one page.

        Transport failures raise SemanticModelError for the caller to recover.
        An unparseable reply returns an empty result flagged ``parse_failed``.
        """
        prompt = build_prompt(ocr_page)
        page_b64 = extract_single_page(document_b64, ocr_page.page_number)

        logger.info("Sending page %d to Gemini...", ocr_page.page_number)
        text = self.client.generate(prompt, document_b64=page_b64)

        outcome = parse_model_json(text)
        if not outcome.ok:
            logger.error(
                "Gemini JSON parse error on page %d (%s): %s",
                ocr_page.page_number,
                outcome.error,
                text[:200],
            )
            return SemanticPageResult(total_field_count=0, fields=[], parse_failed=True)

        result = payload_to_result(outcome.payload)
        logger.info(
            "Gemini identified %d fields on page %d (%d in detail)",
            result.total_field_count,
            ocr_page.page_number,
            len(result.fields),
        )
        return result

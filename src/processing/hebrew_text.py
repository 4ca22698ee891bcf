"""
Hebrew text utilities: direction detection, label similarity, field naming,
and confidence scoring.
"""
import re
from typing import Dict, Optional

HEBREW_CHAR_PATTERN = re.compile(r"[\u0590-\u05FF]")
# Vowel points that OCR sometimes keeps and sometimes drops
NIQQUD_PATTERN = re.compile(r"[\u05B0-\u05BD\u05BF-\u05C7]")
# Trailing ASCII colon, Hebrew sof pasuq (U+05C3) and whitespace
TRAILING_PUNCT_PATTERN = re.compile(r"[:\s\u05C3]+$")
WHITESPACE_PATTERN = re.compile(r"\s+")
# Root of "signature" / "signature of"
SIGNATURE_PATTERN = re.compile(r"חתימ[הת]")

LABEL_MATCH_THRESHOLD = 0.85

HEBREW_FIELD_NAMES: Dict[str, str] = {
    "שם": "name",
    "שם מלא": "full_name",
    "שם פרטי": "first_name",
    "שם משפחה": "last_name",
    "שם הלקוח": "customer_name",
    "שם הסוכן": "agent_name",
    "כתובת": "address",
    "כתובת העסק": "business_address",
    "עיר": "city",
    "מיקוד": "zip_code",
    "רחוב": "street",
    "רח'": "street",
    "טלפון": "phone",
    "נייד": "mobile",
    "פקס": "fax",
    "ת.ז": "id_number",
    "ת.ז.": "id_number",
    "תאריך": "date",
    "חתימה": "signature",
    "חתימת מזמין": "client_signature",
    "חתימת המזמין": "client_signature",
    "חתימת מזמין השירות": "client_signature",
    "חתימת נותן השירות": "provider_signature",
    "חתימת מסמך השירות": "service_document_signature",
    "חתימת הלקוח": "customer_signature",
    "חתימת מורשה": "authorized_signature",
    "איש קשר": "contact_person",
    "הערות": "notes",
    "מספר": "number",
    "מס'": "number",
    "חשבון": "account",
    "בנק": "bank",
    "סניף": "branch",
    "פרטי": "first_name",
    "משפחה": "last_name",
    'דוא"ל': "email",
    "E-mail": "email",
}


def is_hebrew_text(text: Optional[str]) -> bool:
    """True when the text contains at least one Hebrew-block codepoint."""
    return bool(text) and HEBREW_CHAR_PATTERN.search(text) is not None


def is_signature_label(text: Optional[str]) -> bool:
    return bool(text) and SIGNATURE_PATTERN.search(text) is not None


def normalize_label(text: str) -> str:
    """Trim, drop trailing colons (Latin or Hebrew sof pasuq) and collapse whitespace."""
    cleaned = TRAILING_PUNCT_PATTERN.sub("", text.strip())
    return WHITESPACE_PATTERN.sub(" ", cleaned)


def strip_niqqud(text: str) -> str:
    return NIQQUD_PATTERN.sub("", text)


def strip_colon(text: str) -> str:
    return text[:-1] if text.endswith(":") else text


def hebrew_text_similarity(a: str, b: str) -> float:
    """
    Score how well two label strings match, 0 to 1.

    1.0 exact after normalization, 0.9 containment, 0.95 / 0.85 for the same
    tests once vowel points are removed, otherwise 0.
    """
    clean_a = normalize_label(a or "")
    clean_b = normalize_label(b or "")

    if not clean_a or not clean_b:
        return 1.0 if clean_a == clean_b else 0.0

    if clean_a == clean_b:
        return 1.0
    if clean_b in clean_a or clean_a in clean_b:
        return 0.9

    norm_a = strip_niqqud(clean_a)
    norm_b = strip_niqqud(clean_b)
    if norm_a == norm_b:
        return 0.95
    if norm_b in norm_a or norm_a in norm_b:
        return 0.85

    return 0.0


def generate_field_name(label: str, index: int) -> str:
    """Map a label to a known English field name, else field_<n>."""
    clean = TRAILING_PUNCT_PATTERN.sub("", (label or "").strip())
    # Longest key first so "שם פרטי" wins over "שם"
    for hebrew in sorted(HEBREW_FIELD_NAMES, key=len, reverse=True):
        if hebrew in clean:
            return HEBREW_FIELD_NAMES[hebrew]
    return f"field_{index + 1}"


def confidence_band(value: float) -> str:
    if value >= 0.85:
        return "high"
    if value >= 0.70:
        return "medium"
    return "low"


def calculate_confidence(
    label_match: float,
    position_certainty: float,
    type_certainty: float,
    visual_boundary: bool = False,
) -> Dict[str, object]:
    """
    Weighted confidence for a positioned field.

    Returns:
        {"overall": float, "breakdown": {...}, "quality": "high"|"medium"|"low"}
    """
    overall = label_match * 0.3 + position_certainty * 0.5 + type_certainty * 0.2
    if visual_boundary:
        overall += 0.05
    overall = min(overall, 1.0)

    return {
        "overall": round(overall, 3),
        "breakdown": {
            "label_match": label_match,
            "position_certainty": position_certainty,
            "type_certainty": type_certainty,
        },
        "quality": confidence_band(overall),
    }

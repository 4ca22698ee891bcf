"""Shared builders for the extraction tests."""
import base64
from typing import List

import fitz
import pytest

from utils.models import Box, OcrPageData, OcrSelectionMark, OcrTextLine, OcrWord, PageInfo


def make_pdf(pages: int = 1, width: float = 600, height: float = 800, rotation: int = 0) -> str:
    """Blank PDF as base64."""
    doc = fitz.open()
    for _ in range(pages):
        page = doc.new_page(width=width, height=height)
        if rotation:
            page.set_rotation(rotation)
    data = doc.tobytes()
    doc.close()
    return base64.b64encode(data).decode("ascii")


def polygon_for(x: float, y: float, w: float, h: float, page_height: float) -> List[float]:
    """Inches polygon (clockwise from top-left, top-origin) for a bottom-origin point box."""
    left, right = x / 72, (x + w) / 72
    top, bottom = (page_height - (y + h)) / 72, (page_height - y) / 72
    return [left, top, right, top, right, bottom, left, bottom]


def make_line(content: str, x: float, y: float, w: float, h: float = 18) -> OcrTextLine:
    return OcrTextLine(content=content, box=Box(x=x, y=y, width=w, height=h))


def make_word(content: str, x: float, y: float, w: float, h: float = 18) -> OcrWord:
    return OcrWord(content=content, box=Box(x=x, y=y, width=w, height=h))


def make_mark(x: float, y: float, size: float = 12, confidence: float = 0.9) -> OcrSelectionMark:
    return OcrSelectionMark(state="unselected", box=Box(x=x, y=y, width=size, height=size), confidence=confidence)


def make_page(page_number: int = 1, width: float = 600, height: float = 800, **kwargs) -> OcrPageData:
    return OcrPageData(page_number=page_number, width=width, height=height, **kwargs)


@pytest.fixture
def page_info() -> PageInfo:
    return PageInfo(page_number=1, width=600, height=800)

"""
Coordinate normalization and page geometry.

The OCR provider reports polygons in inches measured from the top-left corner.
Everything downstream works in PDF points measured from the bottom-left corner.
"""
import base64
import logging
from typing import Dict, List, Sequence, Union

import fitz  # PyMuPDF

from utils.models import Box, DEFAULT_BOX, PageInfo, default_page_info

logger = logging.getLogger(__name__)

POINTS_PER_INCH = 72


def _decode(document: Union[str, bytes]) -> bytes:
    if isinstance(document, bytes):
        return document
    return base64.b64decode(document)


def polygon_to_box(polygon: Sequence[float], page_info: PageInfo) -> Box:
    """
    Convert a provider polygon to a canonical box.

    Args:
        polygon: 8 numbers, 4 corners in inches, clockwise from top-left
        page_info: Page the polygon lives on (height in points)

    Returns:
        Box in points with bottom-left origin, rounded to 2 decimals.
        Polygons with fewer than 8 values give the default 50x20 box.
    """
    if not polygon or len(polygon) < 8:
        return DEFAULT_BOX

    xs = [float(v) for v in polygon[0:8:2]]
    ys = [float(v) for v in polygon[1:8:2]]

    # Bound all four corners so skewed quadrilaterals are fully covered
    x_min = min(xs) * POINTS_PER_INCH
    x_max = max(xs) * POINTS_PER_INCH
    y_min = min(ys) * POINTS_PER_INCH
    y_max = max(ys) * POINTS_PER_INCH

    return Box(
        x=x_min,
        y=page_info.height - y_max,
        width=x_max - x_min,
        height=y_max - y_min,
    ).rounded()


def extract_page_dimensions(document: Union[str, bytes]) -> List[PageInfo]:
    """
    Read every page's size in reading orientation.

    Pages rotated by 90 or 270 degrees have width and height swapped. Any
    parse failure yields a single A4 page instead of an exception.
    """
    try:
        with fitz.open(stream=_decode(document), filetype="pdf") as doc:
            pages = []
            for index, page in enumerate(doc):
                width, height = page.mediabox.width, page.mediabox.height
                if page.rotation % 360 in (90, 270):
                    width, height = height, width
                pages.append(PageInfo(page_number=index + 1, width=width, height=height))
    except Exception as exc:
        logger.warning("Could not read page geometry, assuming A4: %s", exc)
        return [default_page_info()]

    if not pages:
        return [default_page_info()]
    return pages


def page_info_map(pages: List[PageInfo]) -> Dict[int, PageInfo]:
    return {p.page_number: p for p in pages}


def extract_single_page(document: Union[str, bytes], page_number: int) -> str:
    """Copy one page (1-based) into a new PDF and return it as base64."""
    with fitz.open(stream=_decode(document), filetype="pdf") as source:
        with fitz.open() as single:
            single.insert_pdf(source, from_page=page_number - 1, to_page=page_number - 1)
            if single.page_count != 1:
                raise ValueError(f"Page {page_number} not found (document has {source.page_count})")
            data = single.tobytes()
    return base64.b64encode(data).decode("ascii")

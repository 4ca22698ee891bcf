"""
Azure Document Intelligence layout OCR.

Submits one asynchronous prebuilt-layout job per document, polls it to a
terminal state and maps the raw result into canonical per-page primitives.
Raw payloads are validated here and never leave this module.
"""
import logging
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from utils.config import Config
from utils.errors import OcrError
from utils.models import (
    DEFAULT_BOX,
    OcrKeyValuePair,
    OcrPageData,
    OcrSelectionMark,
    OcrTable,
    OcrTableCell,
    OcrTextLine,
    OcrWord,
    PageInfo,
    default_page_info,
)
from src.processing.geometry import polygon_to_box

logger = logging.getLogger(__name__)

TERMINAL_STATES = {"succeeded", "failed", "canceled"}
RUNNING_STATES = {"notstarted", "running"}


# ---------------------------------------------------------------------------
# Raw provider payload
# ---------------------------------------------------------------------------

class _AzureModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AzureBoundingRegion(_AzureModel):
    page_number: int = 1
    polygon: List[float] = Field(default_factory=list)


class AzureLine(_AzureModel):
    content: str = ""
    polygon: List[float] = Field(default_factory=list)


class AzureWord(_AzureModel):
    content: str = ""
    polygon: List[float] = Field(default_factory=list)
    confidence: Optional[float] = None


class AzureSelectionMark(_AzureModel):
    state: str = "unselected"
    polygon: List[float] = Field(default_factory=list)
    confidence: Optional[float] = None


class AzurePage(_AzureModel):
    page_number: int
    width: Optional[float] = None
    height: Optional[float] = None
    unit: Optional[str] = None
    angle: Optional[float] = None
    lines: List[AzureLine] = Field(default_factory=list)
    words: List[AzureWord] = Field(default_factory=list)
    selection_marks: List[AzureSelectionMark] = Field(default_factory=list)


class AzureTableCell(_AzureModel):
    row_index: int = 0
    column_index: int = 0
    content: str = ""
    kind: Optional[str] = None
    bounding_regions: List[AzureBoundingRegion] = Field(default_factory=list)


class AzureTable(_AzureModel):
    row_count: int = 0
    column_count: int = 0
    cells: List[AzureTableCell] = Field(default_factory=list)


class AzureKeyValueElement(_AzureModel):
    content: str = ""
    bounding_regions: List[AzureBoundingRegion] = Field(default_factory=list)


class AzureKeyValuePair(_AzureModel):
    key: Optional[AzureKeyValueElement] = None
    value: Optional[AzureKeyValueElement] = None
    confidence: Optional[float] = None


class AzureAnalyzeResult(_AzureModel):
    pages: List[AzurePage] = Field(default_factory=list)
    tables: List[AzureTable] = Field(default_factory=list)
    key_value_pairs: List[AzureKeyValuePair] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class AzureLayoutClient:
    """Minimal REST client for the layout-analysis long-running operation."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        api_version: Optional[str] = None,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint or Config.AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT
        self.api_key = api_key or Config.AZURE_DOCUMENT_INTELLIGENCE_KEY
        self.api_version = api_version or Config.AZURE_DI_API_VERSION
        self.poll_interval = Config.AZURE_POLL_INTERVAL if poll_interval is None else poll_interval
        self.timeout = timeout or Config.AZURE_REQUEST_TIMEOUT
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"Ocp-Apim-Subscription-Key": self.api_key or ""}

    def analyze(self, document_b64: str) -> Dict[str, Any]:
        """
        Run prebuilt-layout with key/value pairs and wait for the result.

        Returns:
            The raw ``analyzeResult`` dictionary.

        Raises:
            OcrError: on any non-success response or terminal state
        """
        url = Config.get_azure_analyze_url(self.endpoint)
        params = {"api-version": self.api_version, "features": "keyValuePairs"}

        try:
            response = self.session.post(
                url,
                params=params,
                headers=self._headers(),
                json={"base64Source": document_b64},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OcrError(f"Azure request failed: {exc}") from exc

        if response.status_code not in (200, 202):
            raise OcrError(f"Azure API error {response.status_code}: {response.text[:500]}")

        operation_url = response.headers.get("Operation-Location")
        if not operation_url:
            raise OcrError("Azure response has no Operation-Location header")

        body = self._poll(operation_url)
        analyze_result = body.get("analyzeResult")
        if not analyze_result:
            raise OcrError("No analysis result from Azure")
        return analyze_result

    def _poll(self, operation_url: str) -> Dict[str, Any]:
        while True:
            try:
                response = self.session.get(operation_url, headers=self._headers(), timeout=self.timeout)
            except requests.RequestException as exc:
                raise OcrError(f"Azure polling failed: {exc}") from exc

            if response.status_code != 200:
                raise OcrError(f"Azure polling error {response.status_code}: {response.text[:500]}")

            try:
                body = response.json()
            except ValueError as exc:
                raise OcrError(f"Azure polling returned invalid JSON: {exc}") from exc
            status = str(body.get("status", "")).lower()
            if status == "succeeded":
                return body
            if status in TERMINAL_STATES:
                raise OcrError(f"Azure analysis {status}: {body.get('error')}")
            if status not in RUNNING_STATES:
                raise OcrError(f"Azure analysis returned unexpected status '{status}'")

            retry_after = response.headers.get("Retry-After")
            time.sleep(float(retry_after) if retry_after and retry_after.isdigit() else self.poll_interval)


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def _page_info(page_number: int, page_infos: Dict[int, PageInfo]) -> PageInfo:
    return page_infos.get(page_number) or default_page_info(page_number)


def map_analyze_result(
    analyze_result: AzureAnalyzeResult,
    page_infos: Dict[int, PageInfo],
) -> Dict[int, OcrPageData]:
    """Map a validated provider result into canonical OCR page data."""
    tables_by_page: Dict[int, List[OcrTable]] = defaultdict(list)
    for table in analyze_result.tables:
        first_regions = table.cells[0].bounding_regions if table.cells else []
        table_page = first_regions[0].page_number if first_regions else 1
        pi = _page_info(table_page, page_infos)

        cells = [
            OcrTableCell(
                row_index=cell.row_index,
                column_index=cell.column_index,
                content=cell.content,
                box=(
                    polygon_to_box(cell.bounding_regions[0].polygon, pi)
                    if cell.bounding_regions and cell.bounding_regions[0].polygon
                    else DEFAULT_BOX
                ),
                kind=cell.kind,
            )
            for cell in table.cells
        ]
        tables_by_page[table_page].append(
            OcrTable(row_count=table.row_count, column_count=table.column_count, cells=cells)
        )

    kv_by_page: Dict[int, List[OcrKeyValuePair]] = defaultdict(list)
    dropped_kv = 0
    for kv in analyze_result.key_value_pairs:
        if not (kv.key and kv.key.bounding_regions and kv.value and kv.value.bounding_regions):
            dropped_kv += 1
            continue
        key_region = kv.key.bounding_regions[0]
        value_region = kv.value.bounding_regions[0]
        pi = _page_info(key_region.page_number, page_infos)
        kv_by_page[key_region.page_number].append(
            OcrKeyValuePair(
                key=kv.key.content,
                key_box=polygon_to_box(key_region.polygon, pi),
                value_box=polygon_to_box(value_region.polygon, pi),
                confidence=kv.confidence or 0.8,
            )
        )
    if dropped_kv:
        logger.debug("Dropped %d key/value pairs without key and value geometry", dropped_kv)

    ocr_pages: Dict[int, OcrPageData] = {}
    for page in analyze_result.pages:
        pi = _page_info(page.page_number, page_infos)
        text_lines = [OcrTextLine(content=l.content, box=polygon_to_box(l.polygon, pi)) for l in page.lines]
        words = [OcrWord(content=w.content, box=polygon_to_box(w.polygon, pi)) for w in page.words]
        marks = [
            OcrSelectionMark(
                state=m.state or "unselected",
                box=polygon_to_box(m.polygon, pi),
                confidence=m.confidence or 0.5,
            )
            for m in page.selection_marks
        ]
        ocr_pages[page.page_number] = OcrPageData(
            page_number=page.page_number,
            width=pi.width,
            height=pi.height,
            text_lines=text_lines,
            words=words,
            selection_marks=marks,
            tables=tables_by_page.get(page.page_number, []),
            kv_pairs=kv_by_page.get(page.page_number, []),
        )
        logger.info(
            "Page %d: %d lines, %d words, %d selection marks, %d tables, %d kv pairs",
            page.page_number,
            len(text_lines),
            len(words),
            len(marks),
            len(ocr_pages[page.page_number].tables),
            len(ocr_pages[page.page_number].kv_pairs),
        )

    return ocr_pages


def run_azure_ocr(
    document_b64: str,
    page_infos: Dict[int, PageInfo],
    client: AzureLayoutClient,
) -> Tuple[Dict[int, OcrPageData], AzureAnalyzeResult]:
    """
    OCR a whole document once.

    Returns:
        (ocr pages keyed by page number, validated raw result)

    Raises:
        OcrError: the provider failed or returned an unusable payload
    """
    logger.info("Sending document to Azure Document Intelligence...")
    raw = client.analyze(document_b64)
    try:
        analyze_result = AzureAnalyzeResult.model_validate(raw)
    except ValidationError as exc:
        raise OcrError(f"Azure result failed validation: {exc}") from exc

    ocr_pages = map_analyze_result(analyze_result, page_infos)
    logger.info(
        "Azure OCR done: %d pages, %d tables, %d key/value pairs",
        len(analyze_result.pages),
        len(analyze_result.tables),
        len(analyze_result.key_value_pairs),
    )
    return ocr_pages, analyze_result

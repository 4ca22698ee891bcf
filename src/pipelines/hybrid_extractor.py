"""
Hybrid field extraction: Azure OCR + Gemini field identification + matching.

OCR runs once per document and any failure there aborts the extraction.
Each page is then identified and matched on its own; a page whose semantic
step fails falls back to colon-terminated OCR lines instead of aborting.
"""
import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Dict, List, Optional, Tuple, Union

from utils.config import Config
from utils.errors import ConfigurationError
from utils.models import (
    Direction,
    ExtractedField,
    ExtractionResult,
    InputType,
    OcrPageData,
    PageInfo,
    PageOutcome,
    Provenance,
    SemanticPageResult,
)
from src.ocr.azure_layout import AzureLayoutClient, run_azure_ocr
from src.pipelines.field_identifier import FieldIdentifier
from src.pipelines.field_matching import PageMatch, match_fields
from src.processing.geometry import extract_page_dimensions, page_info_map
from src.processing.hebrew_text import generate_field_name, is_hebrew_text, normalize_label
from src.vlm.gemini_client import GeminiClient

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5
FALLBACK_OFFSET = 150.0
FALLBACK_LTR_WIDTH = 140.0
FALLBACK_MIN_WIDTH = 50.0
FALLBACK_HEIGHT = 20.0
LABEL_TERMINATORS = (":", "\u05c3")


def heuristic_fallback_fields(ocr_page: OcrPageData, page_info: PageInfo) -> List[ExtractedField]:
    """
    Fields for a page whose semantic step failed.

    Every OCR line ending in a colon is a label; the input sits to its left
    (Hebrew) or right (otherwise).
    """
    fields: List[ExtractedField] = []
    left_margin = page_info.width * 0.05

    for line in ocr_page.text_lines:
        content = line.content.strip()
        if not content.endswith(LABEL_TERMINATORS):
            continue

        rtl = is_hebrew_text(content)
        if rtl:
            x = max(left_margin, line.box.x - FALLBACK_OFFSET)
            width = line.box.x - x - 3
        else:
            x = line.box.right + 5
            width = FALLBACK_LTR_WIDTH

        fields.append(
            ExtractedField(
                type=InputType.TEXT,
                name=generate_field_name(content, len(fields)),
                label=normalize_label(content),
                x=round(x, 2),
                y=round(line.box.y, 2),
                width=round(max(width, FALLBACK_MIN_WIDTH), 2),
                height=FALLBACK_HEIGHT,
                page_number=ocr_page.page_number,
                direction=Direction.RTL if rtl else Direction.LTR,
                required=False,
                confidence=FALLBACK_CONFIDENCE,
                provenance=Provenance.FALLBACK,
            )
        )
    return fields


def _unique_names(fields: List[ExtractedField]) -> List[ExtractedField]:
    """Suffix repeated names with _2, _3, ... in document order."""
    seen: Dict[str, int] = {}
    unique = []
    for f in fields:
        count = seen.get(f.name, 0) + 1
        seen[f.name] = count
        unique.append(f if count == 1 else replace(f, name=f"{f.name}_{count}"))
    return unique


class HybridExtractor:
    """
    Orchestrates OCR, per-page identification, matching and gap detection.

    Clients are passed in so tests can substitute fakes.
    """

    def __init__(
        self,
        ocr_client: Optional[AzureLayoutClient] = None,
        semantic_client: Optional[GeminiClient] = None,
        unmatched_policy: Optional[str] = None,
        unmatched_retries: Optional[int] = None,
        row_clustering: Optional[bool] = None,
        page_workers: Optional[int] = None,
    ):
        self.ocr_client = ocr_client or AzureLayoutClient()
        self.semantic_client = semantic_client or GeminiClient()
        self.identifier = FieldIdentifier(self.semantic_client)
        self.unmatched_policy = (unmatched_policy or Config.UNMATCHED_LABEL_POLICY).lower()
        self.unmatched_retries = Config.UNMATCHED_LABEL_RETRIES if unmatched_retries is None else unmatched_retries
        self.row_clustering = Config.ROW_CLUSTERING if row_clustering is None else row_clustering
        self.page_workers = max(1, page_workers or Config.PAGE_WORKERS)

        if self.unmatched_policy not in ("skip", "retry"):
            raise ConfigurationError(f"Unknown unmatched label policy '{self.unmatched_policy}'")

    def _check_credentials(self) -> None:
        missing = []
        if not self.ocr_client.configured:
            missing.append("Azure Document Intelligence endpoint/key")
        if not self.semantic_client.configured:
            missing.append("Gemini API key")
        if missing:
            raise ConfigurationError(f"Not configured: {', '.join(missing)}")

    def extract(self, document: Union[str, bytes]) -> ExtractionResult:
        """
        Extract positioned form fields from a PDF.

        Args:
            document: PDF as base64 text or raw bytes

        Returns:
            ExtractionResult with fields in page order

        Raises:
            ConfigurationError: provider credentials are missing
            OcrError: the OCR stage failed
        """
        self._check_credentials()
        document_b64 = base64.b64encode(document).decode("ascii") if isinstance(document, bytes) else document

        page_dimensions = extract_page_dimensions(document_b64)
        page_infos = page_info_map(page_dimensions)
        logger.info("Processing %d page(s)", len(page_dimensions))

        ocr_pages, analyze_result = run_azure_ocr(document_b64, page_infos, self.ocr_client)
        ordered_pages = [ocr_pages[n] for n in sorted(ocr_pages)]

        if self.page_workers > 1 and len(ordered_pages) > 1:
            with ThreadPoolExecutor(max_workers=self.page_workers) as executor:
                outcomes = list(
                    executor.map(lambda p: self._process_page(document_b64, p, page_infos), ordered_pages)
                )
        else:
            outcomes = [self._process_page(document_b64, p, page_infos) for p in ordered_pages]

        result = self._aggregate(outcomes, page_dimensions)
        result.debug = {
            "approach": "hybrid",
            "azurePages": len(analyze_result.pages),
            "azureKvPairs": len(analyze_result.key_value_pairs),
            "azureTables": len(analyze_result.tables),
            "pagesProcessed": len(ocr_pages),
            "fallbackPages": [o.page_number for o in outcomes if o.fell_back],
            "unmatchedLabels": {o.page_number: len(o.unmatched_labels) for o in outcomes if o.unmatched_labels},
        }

        logger.info("DONE: %d total fields across %d pages", len(result.fields), len(page_dimensions))
        logger.info("Fields per page: %s", result.fields_per_page)
        return result

    def _process_page(
        self,
        document_b64: str,
        ocr_page: OcrPageData,
        page_infos: Dict[int, PageInfo],
    ) -> PageOutcome:
        page_number = ocr_page.page_number
        page_info = page_infos.get(page_number) or ocr_page.page_info

        try:
            semantic, page_match = self._identify_and_match(document_b64, ocr_page, page_info)
        except Exception:
            logger.error("Gemini failed for page %d", page_number, exc_info=True)
            semantic, page_match = None, None

        if semantic is None or semantic.parse_failed:
            logger.info("Falling back to Azure-only for page %d", page_number)
            return PageOutcome(
                page_number=page_number,
                fields=heuristic_fallback_fields(ocr_page, page_info),
                fell_back=True,
            )

        outcome = PageOutcome(
            page_number=page_number,
            fields=page_match.fields,
            expected_count=semantic.total_field_count,
            unmatched_labels=page_match.unmatched_labels,
        )
        if outcome.gap > 0:
            logger.warning(
                "Page %d: Gemini expected %d fields, got %d (%d gap)",
                page_number,
                outcome.expected_count,
                len(outcome.fields),
                outcome.gap,
            )
        return outcome

    def _identify_and_match(
        self,
        document_b64: str,
        ocr_page: OcrPageData,
        page_info: PageInfo,
    ) -> Tuple[SemanticPageResult, PageMatch]:
        semantic = self.identifier.identify(document_b64, ocr_page)
        if semantic.parse_failed:
            return semantic, PageMatch()
        page_match = match_fields(semantic, ocr_page, page_info, self.row_clustering)

        if self.unmatched_policy != "retry":
            return semantic, page_match

        attempts = 0
        while page_match.unmatched_labels and attempts < self.unmatched_retries:
            attempts += 1
            logger.info(
                "Page %d: retrying identification for %d unmatched labels (attempt %d)",
                ocr_page.page_number,
                len(page_match.unmatched_labels),
                attempts,
            )
            try:
                retry = self.identifier.identify(document_b64, ocr_page)
            except Exception as exc:
                logger.warning("Page %d: retry failed, keeping first result: %s", ocr_page.page_number, exc)
                break
            if retry.parse_failed:
                continue
            retry_match = match_fields(retry, ocr_page, page_info, self.row_clustering)
            if retry_match.matched_count > page_match.matched_count:
                semantic, page_match = retry, retry_match
        return semantic, page_match

    @staticmethod
    def _aggregate(outcomes: List[PageOutcome], page_dimensions: List[PageInfo]) -> ExtractionResult:
        all_fields: List[ExtractedField] = []
        fields_per_page: Dict[int, int] = {}
        gaps: Dict[int, int] = {}
        for outcome in outcomes:
            all_fields.extend(outcome.fields)
            if outcome.fields:
                fields_per_page[outcome.page_number] = len(outcome.fields)
            if outcome.gap > 0:
                gaps[outcome.page_number] = outcome.gap

        return ExtractionResult(
            fields=_unique_names(all_fields),
            page_dimensions=page_dimensions,
            fields_per_page=fields_per_page,
            gaps=gaps,
        )

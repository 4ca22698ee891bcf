"""
FastAPI endpoint for hybrid form-field extraction.
"""
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
import uvicorn

from utils.config import Config, setup_logging
from utils.errors import ConfigurationError, ExtractionError, OcrError
from src.pipelines.hybrid_extractor import HybridExtractor

logger = logging.getLogger(__name__)


class ExtractFieldsRequest(BaseModel):
    pdfBase64: str = Field(..., min_length=1, description="PDF data is required")
    pageCount: Optional[int] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the extractor once per process from Config."""
    app.state.extractor = HybridExtractor()
    yield


app = FastAPI(
    lifespan=lifespan,
    title="Hebrew Form Fields API",
    description="Hybrid Azure OCR + Gemini field extraction for Hebrew RTL forms",
    version="1.0.0",
)


def get_extractor(request: Request) -> HybridExtractor:
    return request.app.state.extractor


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {"status": "ok", "missing_credentials": Config.credentials_missing()}


@app.post("/api/v1/extract-fields-hybrid")
def extract_fields_hybrid(
    request: ExtractFieldsRequest,
    extractor: HybridExtractor = Depends(get_extractor),
) -> Dict[str, Any]:
    """Extract form fields from a PDF using OCR geometry and Gemini semantics."""
    logger.info("Processing PDF with %s pages", request.pageCount or "unknown")

    try:
        base64.b64decode(request.pdfBase64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="pdfBase64 is not valid base64")

    try:
        result = extractor.extract(request.pdfBase64)
    except ConfigurationError as e:
        logger.error("Field extraction not configured: %s", e)
        raise HTTPException(status_code=503, detail=str(e))
    except OcrError as e:
        logger.error("Field extraction failed at OCR: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    except ExtractionError as e:
        logger.error("Field extraction failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    logger.info("Extraction completed: %d fields extracted", len(result.fields))
    return result.to_dict()


if __name__ == "__main__":
    setup_logging()
    uvicorn.run(app, host=Config.API_HOST, port=Config.API_PORT)

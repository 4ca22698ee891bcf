"""
Configuration management for the hybrid field-extraction pipeline.
"""
import logging
import os
from typing import List, Optional
from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()


class Config:
    """Configuration class for application settings."""

    # Azure Document Intelligence (OCR provider)
    AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT: Optional[str] = os.getenv("AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT")
    AZURE_DOCUMENT_INTELLIGENCE_KEY: Optional[str] = os.getenv("AZURE_DOCUMENT_INTELLIGENCE_KEY")
    AZURE_DI_API_VERSION: str = os.getenv("AZURE_DI_API_VERSION", "2024-11-30")
    AZURE_DI_MODEL: str = os.getenv("AZURE_DI_MODEL", "prebuilt-layout")
    AZURE_POLL_INTERVAL: float = float(os.getenv("AZURE_POLL_INTERVAL", "1.0"))
    AZURE_REQUEST_TIMEOUT: float = float(os.getenv("AZURE_REQUEST_TIMEOUT", "60"))

    # Gemini (semantic model)
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    GEMINI_CHAT_MODEL: str = os.getenv("GEMINI_CHAT_MODEL", "gemini-1.5-pro")
    GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    GEMINI_TIMEOUT: float = float(os.getenv("GEMINI_TIMEOUT", "300"))

    # Matching policy
    UNMATCHED_LABEL_POLICY: str = os.getenv("UNMATCHED_LABEL_POLICY", "skip").lower()
    UNMATCHED_LABEL_RETRIES: int = int(os.getenv("UNMATCHED_LABEL_RETRIES", "1"))
    ROW_CLUSTERING: bool = os.getenv("ROW_CLUSTERING", "false").lower() == "true"

    # Processing Configuration
    PAGE_WORKERS: int = int(os.getenv("PAGE_WORKERS", "1"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))

    @classmethod
    def credentials_missing(cls) -> List[str]:
        """Names of provider settings that are not configured."""
        required = {
            "AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT": cls.AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT,
            "AZURE_DOCUMENT_INTELLIGENCE_KEY": cls.AZURE_DOCUMENT_INTELLIGENCE_KEY,
            "GEMINI_API_KEY": cls.GEMINI_API_KEY,
        }
        return [name for name, value in required.items() if not value]

    @classmethod
    def get_azure_analyze_url(cls, endpoint: Optional[str] = None) -> str:
        """Get the layout-analysis submit URL."""
        base = (endpoint or cls.AZURE_DOCUMENT_INTELLIGENCE_ENDPOINT or "").rstrip("/")
        return f"{base}/documentintelligence/documentModels/{cls.AZURE_DI_MODEL}:analyze"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts and the API server."""
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

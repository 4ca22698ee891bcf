"""
Gemini client for multimodal (PDF page + prompt) generation.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

import requests

from utils.config import Config
from utils.errors import SemanticModelError

logger = logging.getLogger(__name__)


class GeminiClient:
    """Client for the Gemini generateContent REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize Gemini client.

        Args:
            api_key: API key (default: from Config)
            model: Model name (default: Config.GEMINI_CHAT_MODEL)
            base_url: API root (default: from Config)
            timeout: Per-request timeout in seconds
            session: Optional requests session, mainly for tests. Without one,
                each thread gets its own session since requests sessions are
                not thread-safe.
        """
        self.api_key = api_key or Config.GEMINI_API_KEY
        self.model = model or Config.GEMINI_CHAT_MODEL
        self.base_url = (base_url or Config.GEMINI_BASE_URL).rstrip("/")
        self.timeout = timeout or Config.GEMINI_TIMEOUT
        self._session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        if not hasattr(self._local, "session"):
            self._local.session = requests.Session()
        return self._local.session

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def generate(
        self,
        prompt: str,
        document_b64: Optional[str] = None,
        mime_type: str = "application/pdf",
    ) -> str:
        """
        Generate text from a prompt and an optional inline document.

        Returns:
            Concatenated text of the first candidate

        Raises:
            SemanticModelError: transport failure, non-2xx status, or no text
        """
        if not self.api_key:
            raise SemanticModelError("GEMINI_API_KEY not configured")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        if document_b64:
            parts.append({"inline_data": {"mime_type": mime_type, "data": document_b64}})
        payload = {"contents": [{"role": "user", "parts": parts}]}

        try:
            response = self.session.post(
                url,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise SemanticModelError(f"Error calling Gemini API: {exc}") from exc

        return self._response_text(body)

    @staticmethod
    def _response_text(body: Dict[str, Any]) -> str:
        candidates = body.get("candidates") or []
        if not candidates:
            feedback = body.get("promptFeedback")
            raise SemanticModelError(f"Gemini returned no candidates (feedback: {feedback})")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not text.strip():
            raise SemanticModelError(
                f"Gemini returned empty text (finishReason: {candidates[0].get('finishReason')})"
            )
        return text

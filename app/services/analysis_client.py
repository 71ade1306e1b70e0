import io
import logging
from typing import Any, Dict, Optional

import requests
from PyPDF2 import PdfReader

from app.core import prompts
from app.core.config import AISettings
from app.core.exceptions import AnalysisServiceError
from app.stores.blob_store import BlobStore

logger = logging.getLogger(__name__)


class AnalysisClient:
    """
    Submits a stored document plus instructions for analysis.

    Returns the model's reply as {"message": {"content": ...}} where content is
    either a string or a list of parts whose first element carries the text.
    """

    def analyze(self, document_path: str, instructions: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


def extract_pdf_text(payload: bytes) -> str:
    reader = PdfReader(io.BytesIO(payload))
    pages = []
    for page in reader.pages:
        pages.append(page.extract_text() or "")
    return "\n\n".join(pages).strip()


class OpenRouterAnalysisClient(AnalysisClient):
    def __init__(self, blob_store: BlobStore, ai_settings: AISettings, timeout: float = 120):
        self.blob_store = blob_store
        self.ai = ai_settings
        self.timeout = timeout

    def _document_text(self, document_path: str) -> str:
        payload = self.blob_store.read(document_path)
        if not payload:
            raise AnalysisServiceError(f"Document {document_path} is not available for analysis")
        try:
            text = extract_pdf_text(payload)
        except Exception as e:
            raise AnalysisServiceError(f"Failed to extract text from {document_path}: {e}") from e
        if not text:
            raise AnalysisServiceError(f"No text extracted from {document_path}")
        return text

    def analyze(self, document_path: str, instructions: str) -> Optional[Dict[str, Any]]:
        if self.ai.kill_switch:
            logger.warning("AI Kill-switch is active. Blocking request.")
            raise AnalysisServiceError("AI services are currently offline for maintenance.")

        if not self.ai.openrouter_api_key:
            logger.error("OpenRouter API Key missing.")
            raise AnalysisServiceError("AI service configuration error.")

        resume_text = self._document_text(document_path)
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": instructions},
                    {"type": "text", "text": prompts.get_prompt(prompts.RESUME_DOCUMENT_TEMPLATE, resume_text=resume_text[:20000])},
                ],
            }
        ]

        logger.info(f"Calling AI Model: {self.ai.model_name}")
        try:
            response = requests.post(
                url=self.ai.openrouter_url,
                headers={
                    "Authorization": f"Bearer {self.ai.openrouter_api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.ai.model_name,
                    "messages": messages,
                    "temperature": self.ai.temperature,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            choices = response.json().get("choices") or []
        except requests.exceptions.Timeout as e:
            logger.error("AI service timeout.")
            raise AnalysisServiceError("AI service reached timeout limit.") from e
        except requests.exceptions.HTTPError as e:
            logger.error(f"AI service HTTP error: {e}")
            raise AnalysisServiceError(f"AI service returned error: {e.response.status_code}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            raise AnalysisServiceError(f"AI service error: {str(e)}") from e

        if not choices:
            return None
        return {"message": choices[0].get("message") or {}}

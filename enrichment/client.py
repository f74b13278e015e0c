"""
HTTP client for the Gemini generateContent API.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from crawler.exceptions import MonitorError
from enrichment.models import AnnotatorConfig

logger = structlog.get_logger(__name__)


class AnnotationError(MonitorError):
    """The text-generation service could not produce a usable answer."""


class GeminiClient:
    """Sends one prompt, returns the generated text."""

    def __init__(self, config: AnnotatorConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the client.

        Args:
            config: Annotator configuration (key, model, generation settings)
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.client_config: Dict[str, Any] = {
            "timeout": httpx.Timeout(config.timeout),
            "headers": {"Content-Type": "application/json"},
        }
        if transport is not None:
            self.client_config["transport"] = transport
        self.logger = logger.bind(component="gemini_client", model=config.model)

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/models/{self.config.model}:generateContent"

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }

    async def generate(self, prompt: str) -> str:
        """
        Generate text for a prompt.

        Raises:
            AnnotationError: missing key, network failure, non-success status,
                or a response without text
        """
        if not self.configured:
            raise AnnotationError("Gemini API key is not configured")

        try:
            async with httpx.AsyncClient(**self.client_config) as client:
                response = await client.post(
                    self.endpoint,
                    json=self.build_payload(prompt),
                    headers={"x-goog-api-key": self.config.api_key},
                )
        except httpx.HTTPError as e:
            self.logger.warning("Gemini request failed", error=str(e))
            raise AnnotationError(f"Gemini request failed: {e}") from e

        if not response.is_success:
            self.logger.warning("Gemini returned an error status", status_code=response.status_code)
            raise AnnotationError(f"Gemini API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise AnnotationError("Gemini response was not JSON") from e

        text = self._extract_text(data)
        if not text:
            raise AnnotationError("Gemini response contained no text")
        return text

    @staticmethod
    def _extract_text(data: Any) -> str:
        """
        Concatenate the string text parts of the first candidate.

        Raises:
            AnnotationError: the body does not have the expected shape
        """
        if not isinstance(data, dict):
            raise AnnotationError("Gemini response was not an object")
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            raise AnnotationError("Gemini response had no candidates")
        content = candidates[0].get("content")
        if not isinstance(content, dict):
            raise AnnotationError("Gemini candidate had no content object")
        parts = content.get("parts")
        if not isinstance(parts, list):
            raise AnnotationError("Gemini content had no parts list")
        texts = [part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)]
        return "".join(texts).strip()

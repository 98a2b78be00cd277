"""Ollama-based provider for self-hosted LLM inference.

Uses a local Ollama server for invoice extraction and history analysis.
Keeps invoice data on-premises.

Requires Ollama server running on localhost:11434 (configurable).
See: https://ollama.ai/
"""

import json
import logging
from typing import Any

import httpx
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invoicing.extraction.base import AnalysisResult, ExtractionProvider, ExtractionResult
from invoicing.extraction.schema import (
    INVOICE_JSON_SCHEMA,
    InvoicePayloadError,
    InvoiceRecord,
    parse_invoice_json,
)
from invoicing.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(ExtractionProvider):
    """Invoice extraction and analysis through a self-hosted Ollama server.

    Uses the non-streaming generate endpoint; any pulled chat model works
    (``Settings.ollama_model``).
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=120.0)

    @property
    def provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """True when the server answers and the configured model is pulled."""
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def extract_invoices(self, xml_text: str) -> ExtractionResult:
        """Extract invoices from XML content using Ollama.

        Args:
            xml_text: Raw XML content

        Returns:
            ExtractionResult with invoice records or error
        """
        if not xml_text or not xml_text.strip():
            return ExtractionResult(
                success=False,
                error="Empty XML content provided",
                provider=self.provider_name,
            )

        try:
            prompt = (
                self._build_extraction_prompt(xml_text)
                + "\n\nSCHEMA of each array element:\n"
                + json.dumps(INVOICE_JSON_SCHEMA)
                + "\n\nReturn ONLY the JSON array, no explanation."
            )
            response_text = self._call_ollama_with_retry(prompt, temperature=0)
            invoices = parse_invoice_json(response_text)

            logger.info(f"Ollama extracted {len(invoices)} invoice(s)")
            return ExtractionResult(
                invoices=invoices,
                success=True,
                provider=self.provider_name,
            )

        except InvoicePayloadError as e:
            logger.warning(f"Unexpected extraction payload from Ollama: {e}")
            return ExtractionResult(
                success=False,
                error=f"Unexpected response format: {str(e)}",
                provider=self.provider_name,
            )
        except Exception as e:
            logger.error(f"Ollama extraction failed: {e}")
            return ExtractionResult(
                success=False,
                error=f"Extraction failed: {str(e)}",
                provider=self.provider_name,
            )

    def analyze_invoices(self, invoices: list[InvoiceRecord], prompt: str) -> AnalysisResult:
        """Answer a question about the invoice history using Ollama."""
        rejected = self._check_analysis_input(invoices, prompt)
        if rejected is not None:
            return rejected

        try:
            text = self._call_ollama_with_retry(
                self._build_analysis_prompt(invoices, prompt), temperature=0.2
            )
            if not text.strip():
                return AnalysisResult(
                    success=False,
                    error="Empty analysis returned by Ollama",
                    provider=self.provider_name,
                )
            return AnalysisResult(text=text, success=True, provider=self.provider_name)

        except Exception as e:
            logger.error(f"Ollama analysis failed: {e}")
            return AnalysisResult(
                success=False,
                error=f"Analysis failed: {str(e)}",
                provider=self.provider_name,
            )

    def _call_ollama_with_retry(self, prompt: str, temperature: float) -> str:
        """Call Ollama generate API under the configured retry policy.

        Args:
            prompt: Prompt for the LLM
            temperature: Sampling temperature

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all attempts exhausted
        """
        retrying = Retrying(
            retry=retry_if_exception_type((httpx.HTTPError, httpx.TimeoutException)),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.llm_max_attempts),
            reraise=True,
        )
        return retrying(self._generate, prompt, temperature)

    def _generate(self, prompt: str, temperature: float) -> str:
        response = self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature},
            },
        )
        response.raise_for_status()
        body: dict[str, Any] = response.json()
        result: str = body.get("response", "")
        return result

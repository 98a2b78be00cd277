"""OpenAI-based provider for invoice extraction and analysis.

Uses OpenAI API function calling to get the invoice array back as
schema-shaped JSON, and plain chat completions for history analysis.

Calls go through tenacity; the number of attempts comes from
``Settings.llm_max_attempts`` (1 by default, so a failed call is final).
"""

import json
import logging
import os
from typing import Any

from openai import OpenAI
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
    parse_invoice_array,
)
from invoicing.shared.config import Settings

logger = logging.getLogger(__name__)


class OpenAIExtractionProvider(ExtractionProvider):
    """Hosted OpenAI chat models (``Settings.openai_model``); needs OPENAI_API_KEY."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        return "openai"

    def is_available(self) -> bool:
        """True when OPENAI_API_KEY is present in the environment."""
        return os.getenv("OPENAI_API_KEY") is not None

    def _ensure_client(self) -> None:
        api_key = os.getenv("OPENAI_API_KEY")
        if self._client is None or self._client.api_key != api_key:
            self._client = OpenAI(api_key=api_key)

    def extract_invoices(self, xml_text: str) -> ExtractionResult:
        """Extract invoices from XML content using OpenAI.

        Args:
            xml_text: Raw XML content

        Returns:
            ExtractionResult with invoice records or error, provider='openai'
        """
        if not self.is_available():
            return ExtractionResult(
                success=False,
                error="OPENAI_API_KEY environment variable not set",
                provider=self.provider_name,
            )

        if not xml_text or not xml_text.strip():
            return ExtractionResult(
                success=False,
                error="Empty XML content provided",
                provider=self.provider_name,
            )

        try:
            self._ensure_client()

            response = self._call_openai_with_retry(
                model=self.settings.openai_model,
                messages=[
                    {
                        "role": "system",
                        "content": "You are an invoice data extraction assistant.",
                    },
                    {"role": "user", "content": self._build_extraction_prompt(xml_text)},
                ],
                functions=[self._get_invoices_function()],
                function_call={"name": "record_invoices"},
                temperature=0,
            )

            message = response.choices[0].message
            if message.function_call is None:
                return ExtractionResult(
                    success=False,
                    error="No function call in API response",
                    provider=self.provider_name,
                )

            arguments = json.loads(message.function_call.arguments)
            payload = arguments.get("invoices") if isinstance(arguments, dict) else arguments
            invoices = parse_invoice_array(payload)

            logger.info(f"OpenAI extracted {len(invoices)} invoice(s)")
            return ExtractionResult(
                invoices=invoices,
                success=True,
                provider=self.provider_name,
            )

        except (InvoicePayloadError, json.JSONDecodeError) as e:
            logger.warning(f"Unexpected extraction payload from OpenAI: {e}")
            return ExtractionResult(
                success=False,
                error=f"Unexpected response format: {str(e)}",
                provider=self.provider_name,
            )
        except Exception as e:
            logger.error(f"OpenAI extraction failed: {e}")
            return ExtractionResult(
                success=False,
                error=f"Extraction failed: {str(e)}",
                provider=self.provider_name,
            )

    def analyze_invoices(self, invoices: list[InvoiceRecord], prompt: str) -> AnalysisResult:
        """Answer a question about the invoice history using OpenAI.

        Args:
            invoices: Full invoice history
            prompt: User request

        Returns:
            AnalysisResult with markdown text or error, provider='openai'
        """
        rejected = self._check_analysis_input(invoices, prompt)
        if rejected is not None:
            return rejected

        if not self.is_available():
            return AnalysisResult(
                success=False,
                error="OPENAI_API_KEY environment variable not set",
                provider=self.provider_name,
            )

        try:
            self._ensure_client()

            response = self._call_openai_with_retry(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": "You are a financial analysis assistant."},
                    {"role": "user", "content": self._build_analysis_prompt(invoices, prompt)},
                ],
            )

            text = response.choices[0].message.content
            if not text:
                return AnalysisResult(
                    success=False,
                    error="Empty analysis returned by the API",
                    provider=self.provider_name,
                )

            return AnalysisResult(text=text, success=True, provider=self.provider_name)

        except Exception as e:
            logger.error(f"OpenAI analysis failed: {e}")
            return AnalysisResult(
                success=False,
                error=f"Analysis failed: {str(e)}",
                provider=self.provider_name,
            )

    def _call_openai_with_retry(self, **request: Any) -> Any:
        """Call the chat completions API under the configured retry policy.

        Uses exponential backoff with jitter between attempts.

        Raises:
            Exception: After all attempts are exhausted
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        retrying = Retrying(
            retry=retry_if_exception_type((Exception,)),
            wait=wait_exponential_jitter(initial=1, max=60),
            stop=stop_after_attempt(self.settings.llm_max_attempts),
            reraise=True,
        )
        return retrying(self._client.chat.completions.create, **request)

    @staticmethod
    def _get_invoices_function() -> dict[str, Any]:
        """Get OpenAI function calling schema wrapping the invoice array.

        Returns:
            Function definition dict for OpenAI API
        """
        return {
            "name": "record_invoices",
            "description": "Record every invoice found in the XML document",
            "parameters": {
                "type": "object",
                "properties": {
                    "invoices": {"type": "array", "items": INVOICE_JSON_SCHEMA},
                },
                "required": ["invoices"],
            },
        }

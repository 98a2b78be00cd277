"""Common interface of the LLM backends that read invoices and answer questions.

A provider turns raw XML into validated invoice records and answers
natural-language questions over the stored history. Neither operation
raises for provider-side failures: both report them through the
``success`` and ``error`` fields of their result model.
"""

import json
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from invoicing.extraction.schema import InvoiceRecord
from invoicing.shared.config import Settings


class ExtractionResult(BaseModel):
    """Invoices read from one XML document.

    Attributes:
        invoices: Invoices found in the XML document (empty if extraction failed)
        success: Whether operation succeeded
        error: Error message if operation failed
        provider: Name of provider that performed extraction (e.g., 'openai', 'ollama')
    """

    invoices: list[InvoiceRecord] = Field(default_factory=list)
    success: bool
    error: str | None = None
    provider: str


class AnalysisResult(BaseModel):
    """Result of a natural-language analysis over the invoice history.

    Attributes:
        text: Markdown answer (None if analysis failed)
        success: Whether operation succeeded
        error: Error message if operation failed
        provider: Name of provider that produced the answer
    """

    text: str | None = None
    success: bool
    error: str | None = None
    provider: str


class ExtractionProvider(ABC):
    """LLM backend for invoice extraction and history analysis.

    Subclasses: OpenAIExtractionProvider (hosted API) and
    OllamaExtractionProvider (self-hosted server).
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def extract_invoices(self, xml_text: str) -> ExtractionResult:
        """Extract every invoice contained in an XML document.

        Args:
            xml_text: Raw XML content (one or several invoices)

        Returns:
            ExtractionResult with validated invoice records or error
        """
        pass

    @abstractmethod
    def analyze_invoices(self, invoices: list[InvoiceRecord], prompt: str) -> AnalysisResult:
        """Answer a free-text question about the invoice history.

        Args:
            invoices: Full invoice history
            prompt: User request in natural language

        Returns:
            AnalysisResult with a markdown answer or error
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Whether calls can be expected to reach the backend (credentials, server up)."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Short backend identifier reported in results and logs."""
        pass

    def _check_analysis_input(
        self, invoices: list[InvoiceRecord], prompt: str
    ) -> AnalysisResult | None:
        """Return a failed result for unusable analysis input, else None."""
        if not invoices:
            return AnalysisResult(
                success=False,
                error="No invoice data to analyze",
                provider=self.provider_name,
            )
        if not prompt or not prompt.strip():
            return AnalysisResult(
                success=False,
                error="Empty analysis prompt provided",
                provider=self.provider_name,
            )
        return None

    @staticmethod
    def _build_extraction_prompt(xml_text: str) -> str:
        """Build the extraction prompt shared by all providers."""
        return f"""You are an accounting assistant specialized in electronic invoices.
The following XML content may contain one or several invoices. Identify EVERY
invoice present and extract its data.

Return a JSON array where each element is one invoice and strictly follows the
provided schema. All numeric values must be numbers, not strings. Omit optional
fields such as 'notas' or 'contacto' when they are not present.

XML content:
```xml
{xml_text}
```"""

    @staticmethod
    def _build_analysis_prompt(invoices: list[InvoiceRecord], prompt: str) -> str:
        """Build the analysis prompt with the invoice history embedded as JSON."""
        history = json.dumps([invoice.to_payload() for invoice in invoices], indent=2)
        return f"""You are a business and financial analysis assistant. You are given a JSON
array holding an invoice history. Analyze it in depth to answer the user request.

User request: "{prompt}"

Invoice data:
```json
{history}
```

Give a clear, concise and well structured answer. Use Markdown (headings, lists,
bold) so it is easy to read. Offer actionable insights whenever possible and base
the analysis only on the data provided."""

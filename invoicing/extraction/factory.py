"""Selection of the LLM provider used for invoice extraction and analysis.

Providers are looked up by the name configured in
``Settings.extraction_provider``; additional backends can be registered
at runtime under a new name.
"""

import logging

from invoicing.extraction.base import ExtractionProvider
from invoicing.extraction.ollama_provider import OllamaExtractionProvider
from invoicing.extraction.openai_provider import OpenAIExtractionProvider
from invoicing.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Name -> provider class lookup for the configured LLM backend."""

    _providers: dict[str, type[ExtractionProvider]] = {
        "openai": OpenAIExtractionProvider,
        "ollama": OllamaExtractionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Add or replace the provider class stored under ``name``."""
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Look up a provider class.

        Raises:
            ValueError: If no provider is registered under ``name``
        """
        try:
            return cls._providers[name]
        except KeyError:
            choices = ", ".join(sorted(cls._providers))
            raise ValueError(
                f"Unknown extraction provider: '{name}'. Choose one of: {choices}"
            ) from None

    @classmethod
    def list_providers(cls) -> list[str]:
        return list(cls._providers)


def create_extraction_service(settings: Settings) -> ExtractionProvider:
    """Build the provider that uploads and analysis requests will use.

    An unavailable provider (no API key, Ollama server down) is still
    returned so the API can start; its calls then fail with a clear error.

    Args:
        settings: Application settings

    Returns:
        Provider instance for ``settings.extraction_provider``
    """
    name = settings.extraction_provider
    provider = ProviderRegistry.get_provider_class(name)(settings)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{name}' is not fully available; "
            f"uploads and analysis will fail until it is configured."
        )

    logger.info(f"Created extraction provider: {name}")
    return provider

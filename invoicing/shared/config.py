"""Shared configuration management for the invoice ingestion service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_DATABASE_URL=sqlite:////var/lib/invoices/invoices.db
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="xml-invoice-ingest",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction provider configuration
    extraction_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description="Extraction provider: openai (cloud API), ollama (self-hosted LLM)",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI chat model used for extraction and analysis",
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="Ollama model to use for extraction (e.g., qwen2.5:7b, llama3.1:8b)",
    )
    llm_max_attempts: int = Field(
        default=1,
        ge=1,
        description="Attempts per LLM call (1 = a failed call is final)",
    )

    # Invoice history storage
    database_url: str = Field(
        default="sqlite:///invoices.db",
        description="SQLAlchemy URL of the invoice history database",
    )

    # Synchronization of mapped tables into a relational database
    sync_enabled: bool = Field(
        default=False,
        description="Enable writing mapped tables to the sync database",
    )
    sync_database_url: str = Field(
        default="",
        description="SQLAlchemy URL of the sync target (use env var APP_SYNC_DATABASE_URL)",
    )

    # Upload limits
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        gt=0,
        description="Maximum accepted XML upload size in bytes",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()

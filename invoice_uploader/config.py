"""Process-wide configuration loaded once from the environment"""
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Immutable application settings.

    Values come from environment variables (or a local .env file) using the
    conventional names, e.g. GEMINI_API_KEY, UPLOAD_DIR, LLM_PROVIDER.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    app_name: str = "Invoice Uploader Backend API"
    version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Storage
    database_path: str = "invoices.duckdb"
    upload_dir: str = "uploads"
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_mime_types: List[str] = ["application/pdf", "image/png", "image/jpeg"]
    default_currency: str = "USD"

    # HTTP
    frontend_url: str = "http://localhost:3000"

    # Extraction
    llm_provider: Literal["gemini", "openai", "ollama"] = "gemini"
    document_mode: Literal["text", "inline"] = Field(
        default="text",
        description="text: send extracted PDF text; inline: send the file as base64",
    )
    max_prompt_chars: int = Field(default=30000, gt=0)

    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("gemini_api_key", "genai_api_key"),
    )
    gemini_model: str = "models/gemini-2.0-flash-lite"

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "qwen3-vl"

    @property
    def model_name(self) -> str:
        """Identifier of the model used by the configured provider"""
        return {
            "gemini": self.gemini_model,
            "openai": self.openai_model,
            "ollama": self.ollama_model,
        }[self.llm_provider]


@lru_cache
def get_settings() -> Settings:
    """Build the settings once per process"""
    return Settings()

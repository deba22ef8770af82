"""
Configuration management using pydantic-settings.
Reads from .env file and environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration"""

    # AI / LLM Configuration
    groq_api_key: str = "test-key-configure-in-env"
    llm_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.1
    llm_retry_temperature: float = 0.2
    llm_max_tokens: int = 800
    enable_semantic_classifier: bool = True
    classifier_timeout_seconds: float = 12.0

    # Classification thresholds
    heuristic_bypass_confidence: float = 0.95
    min_execution_confidence: float = 0.5
    history_context_turns: int = 4

    # Reference chain resolution
    reference_max_hops: int = 10
    reference_timestamp_tolerance_seconds: float = 30.0

    # Media normalization
    soft_warn_size_mb: int = 10
    max_upload_size_mb: int = 25
    fetch_timeout_seconds: float = 15.0
    canonical_image_format: str = "PNG"
    supported_content_types: List[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "video/mp4",
        "video/quicktime",
        "video/webm",
    ]
    preset_root: str = "public"
    local_asset_base_url: str = "http://localhost:3000"

    # Object storage
    storage_root: str = "storage"
    storage_public_base_url: str = "http://localhost:8000/files"
    persist_timeout_seconds: float = 10.0

    # Generation backends
    backend_base_url: str = "http://localhost:3000"
    backend_timeout_seconds: float = 120.0
    composition_multimodal_path: str = "/api/design"
    composition_text_path: str = "/api/design/text"

    # Fresh generation vs. modification of a prior result
    fresh_generation_phrases: List[str] = [
        "fresh",
        "from scratch",
        "brand new",
        "new design",
        "start over",
        "something new",
    ]

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )


# Global settings instance
settings = Settings()

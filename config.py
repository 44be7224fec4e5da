"""
Configuration management for the QuizGen question service
"""
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Application
    app_name: str = "QuizGen Question Service"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 9006

    # Model providers
    default_mode: str = "ollama"
    default_model: str = "gemma3:latest"
    ollama_base_url: str = "http://localhost:11434"
    google_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    llamacpp_model_path: Optional[str] = None
    llamacpp_n_ctx: int = 4096
    llamacpp_n_threads: int = 8

    # Question generation
    model_timeout_seconds: float = 180.0
    llm_temperature: float = 0.2
    llm_max_tokens: int = 2048
    source_preview_chars: int = 500
    max_questions_per_type: int = 20

    # YouTube
    enable_whisper: bool = False
    whisper_model: str = "tiny"

    # Error handling
    enable_retry: bool = True
    max_retries: int = 2
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0

    # Circuit breaker
    enable_circuit_breaker: bool = True
    cb_failure_threshold: int = 5
    cb_timeout: float = 60.0

    # File upload
    max_file_size_mb: int = 50
    allowed_extensions: List[str] = Field(default_factory=lambda: [".pdf", ".docx", ".pptx", ".txt"])
    upload_dir: str = "./temp_uploads"

    # Logging
    log_dir: str = "./logs"
    log_level: str = "INFO"
    generation_log_file: str = "question_generation.jsonl"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings"""
    return settings


def print_settings():
    """Print current settings (for debugging)"""
    print("=" * 50)
    print(f"{settings.app_name} v{settings.app_version}")
    print("=" * 50)
    print(f"Host: {settings.host}:{settings.port}")
    print(f"Debug Mode: {settings.debug}")
    print(f"Default Provider: {settings.default_mode} ({settings.default_model})")
    print(f"Ollama URL: {settings.ollama_base_url}")
    print(f"Gemini Key Set: {bool(settings.google_api_key)}")
    print(f"Model Timeout: {settings.model_timeout_seconds} seconds")
    print(f"Whisper Fallback: {settings.enable_whisper} ({settings.whisper_model})")
    print(f"Generation Log: {settings.log_dir}/{settings.generation_log_file}")
    print(f"Retry Enabled: {settings.enable_retry}")
    print(f"Circuit Breaker Enabled: {settings.enable_circuit_breaker}")
    print("=" * 50)

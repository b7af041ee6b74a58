"""
Configuration Management for TheraScribe
========================================

This module handles all library configuration using the Settings pattern
with Pydantic. This approach provides:

1. **Environment Variable Support**: Easy deployment configuration
2. **Validation**: Catches configuration errors at startup
3. **Type Safety**: IDE support and runtime validation
4. **Defaults**: Sensible defaults for development

Design Pattern: Singleton-like Settings
We use a cached function to ensure we only load settings once,
but still allow for easy testing with different configurations.
"""

import logging
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Library settings loaded from environment variables.

    Environment variables are prefixed with THERASCRIBE_ to avoid conflicts.
    Example: THERASCRIBE_HUME_API_KEY=...

    Priority order (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values defined here
    """

    # =================================================================
    # Audio Feature Extraction
    # =================================================================
    sample_rate: int = Field(
        default=16000,
        gt=0,
        description="Sample rate (Hz) of the live input stream"
    )

    feature_window_size: int = Field(
        default=1600,
        gt=0,
        description="""
        Samples per analysis window. One feature vector is emitted per window.

        1600 samples at 16 kHz = 100 ms, i.e. a 10 Hz update rate.
        """
    )

    n_mfcc: int = Field(
        default=13,
        gt=0,
        description="Number of cepstral coefficients per feature vector"
    )

    n_mels: int = Field(
        default=26,
        gt=0,
        description="Number of mel filterbank bands used before the DCT"
    )

    # =================================================================
    # Speaker Diarization
    # =================================================================
    speaker_match_threshold: float = Field(
        default=0.1,
        gt=0.0,
        description="""
        Euclidean distance below which a sample is attributed to the
        enrolled speaker (PartyA). Distance equal to the threshold is PartyB.
        """
    )

    enrollment_duration_ms: int = Field(
        default=5000,
        gt=0,
        description="Length of the voice profile capture window (milliseconds)"
    )

    profile_store_path: str = Field(
        default="./voice_profiles.json",
        description="JSON file used by the file-backed voice profile store"
    )

    therapist_label: str = Field(
        default="Therapist",
        description="Display label for the enrolled speaker (PartyA)"
    )

    client_label: str = Field(
        default="Client",
        description="Display label for the other speaker (PartyB)"
    )

    # =================================================================
    # Transcription Service (Hume batch API)
    # =================================================================
    hume_api_key: Optional[str] = Field(
        default=None,
        description="""
        API key for the batch transcription service.

        Read when a request is made, so a missing key only fails the
        transcription call, not library import.
        """
    )

    hume_base_url: str = Field(
        default="https://api.hume.ai/v0",
        description="Base URL of the batch transcription API"
    )

    transcription_request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for a single transcription HTTP request"
    )

    # =================================================================
    # Job Polling
    # =================================================================
    poll_initial_delay_ms: int = Field(
        default=2000,
        gt=0,
        description="Wait after the first 'not ready' status (milliseconds)"
    )

    poll_backoff_multiplier: float = Field(
        default=1.5,
        ge=1.0,
        description="Factor applied to the wait after every 'not ready' status"
    )

    poll_max_delay_ms: int = Field(
        default=10000,
        gt=0,
        description="Upper bound for a single wait between status checks"
    )

    poll_max_attempts: int = Field(
        default=30,
        gt=0,
        description="Status checks allowed before the job is declared timed out"
    )

    # =================================================================
    # Report Generation (Ollama)
    # =================================================================
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server URL. Default is local installation."
    )

    ollama_model: str = Field(
        default="llama3.2",
        description="""
        Ollama model for clinical report generation. Recommended models:

        - llama3.2: Good balance of speed and quality
        - mistral: Fast, good for structured JSON output
        - mixtral: High quality, slower
        """
    )

    generation_api_key: Optional[str] = Field(
        default=None,
        description="Bearer token for a generation backend behind an auth proxy"
    )

    generation_temperature: float = Field(
        default=0.4,
        ge=0.0,
        le=2.0,
        description="""
        Temperature for report generation (0.0 - 2.0)

        Clinical documentation wants consistent output, so keep this low.
        """
    )

    generation_top_k: int = Field(
        default=32,
        gt=0,
        description="Top-k sampling for report generation"
    )

    generation_top_p: float = Field(
        default=0.95,
        gt=0.0,
        le=1.0,
        description="Nucleus (top-p) sampling for report generation"
    )

    generation_max_output_tokens: int = Field(
        default=2048,
        gt=0,
        description="Maximum tokens the model may produce for one report"
    )

    generation_timeout: int = Field(
        default=120,
        description="Timeout in seconds for generation requests"
    )

    default_report_format: str = Field(
        default="SOAP",
        description="Report format used when the caller does not pick one"
    )

    # =================================================================
    # Logging Configuration
    # =================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Python logging format string"
    )

    class Config:
        """Pydantic configuration for Settings."""
        env_prefix = "THERASCRIBE_"  # All env vars start with THERASCRIBE_
        env_file = ".env"  # Load from .env file if present
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get library settings (cached singleton).

    For testing, you can clear the cache:
        get_settings.cache_clear()

    Returns:
        Settings: Library settings instance
    """
    return Settings()


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a Settings instance with custom values for testing.

    Example:
        settings = get_settings_for_testing(
            hume_api_key="test-key",
            poll_max_attempts=3
        )

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: New Settings instance with overrides applied
    """
    return Settings(**overrides)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Apply the configured log level and format to the root logger.

    The library itself only creates module loggers; host applications
    call this when they want TheraScribe's defaults.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format
    )

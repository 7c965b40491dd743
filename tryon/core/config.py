"""
Application configuration.
All settings are loaded from environment variables (or .env).
Upstream credentials have no defaults: the service refuses to start without them.
"""
import re

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Durations are in seconds.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    # CORS: comma-separated origins. Empty = default list in code.
    cors_origins: str = ""

    # ===========================================
    # GOOGLE GEMINI (upstream image generation)
    # ===========================================
    # Comma- or newline-separated API keys. Empty = startup fails.
    gemini_api_keys: str = ""
    gemini_api_endpoint: str = "https://generativelanguage.googleapis.com"
    gemini_image_model: str = "gemini-2.5-flash-image-preview"
    gemini_timeout: float = 120.0

    # ===========================================
    # CREDENTIAL POOL
    # ===========================================
    credential_min_spacing_seconds: float = 0.5
    credential_max_errors: int = 3
    credential_cooldown_seconds: float = 30.0

    # ===========================================
    # REQUEST QUEUE & RETRY
    # ===========================================
    queue_max_concurrent: int = 7
    request_timeout_seconds: float = 60.0
    queue_admit_delay_seconds: float = 0.1
    generation_max_retries: int = 2
    generation_retry_backoff_seconds: float = 1.0

    # ===========================================
    # USAGE TRACKER
    # ===========================================
    usage_warn_threshold: int = 3
    usage_fingerprint_prefix_bytes: int = 100

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator(
        "credential_max_errors",
        "queue_max_concurrent",
        "usage_warn_threshold",
        "usage_fingerprint_prefix_bytes",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("request_timeout_seconds", "gemini_timeout")
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator(
        "credential_min_spacing_seconds",
        "credential_cooldown_seconds",
        "queue_admit_delay_seconds",
        "generation_retry_backoff_seconds",
    )
    @classmethod
    def validate_non_negative_duration(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("generation_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("generation_max_retries must be >= 0")
        return v

    @property
    def gemini_api_keys_list(self) -> list[str]:
        """API keys in declared order, blanks and duplicates dropped."""
        keys: list[str] = []
        for item in re.split(r"[\r\n,]+", self.gemini_api_keys or ""):
            key = item.strip()
            if key and key not in keys:
                keys.append(key)
        return keys

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()

"""Configuration management for the face match microservice."""

from typing import Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Ignore extra environment variables
    )

    # Server configuration
    port: int = 8000
    host: str = "0.0.0.0"

    # Record store configuration
    record_store_backend: str = "memory"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    patients_table: str = "patients"
    store_max_retries: int = 3
    store_retry_base_delay: float = 0.5

    # Face matching settings
    face_match_threshold: float = 0.6

    # Logging and telemetry configuration
    log_level: str = "INFO"
    otlp_endpoint: Optional[str] = None
    enable_console_export: bool = False

    @field_validator('record_store_backend')
    @classmethod
    def validate_record_store_backend(cls, v):
        v = v.lower()
        if v not in ("memory", "supabase"):
            raise ValueError("RECORD_STORE_BACKEND must be 'memory' or 'supabase'")
        return v

    @field_validator('store_max_retries')
    @classmethod
    def validate_store_max_retries(cls, v):
        if v < 1:
            raise ValueError('STORE_MAX_RETRIES must be at least 1')
        return v

    @field_validator('face_match_threshold')
    @classmethod
    def validate_face_match_threshold(cls, v):
        if not -1.0 <= v <= 1.0:
            raise ValueError('FACE_MATCH_THRESHOLD must be between -1.0 and 1.0')
        return v

    @model_validator(mode="after")
    def validate_supabase_credentials(self):
        if self.record_store_backend == "supabase":
            if not self.supabase_url:
                raise ValueError('SUPABASE_URL environment variable is required')
            if not self.supabase_anon_key:
                raise ValueError('SUPABASE_ANON_KEY environment variable is required')
        return self


# Global settings instance
settings = Settings()

"""Application configuration using Pydantic Settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # App metadata
    app_name: str = Field(default="column-bucketer", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")

    # Environment
    env: str = Field(default="dev", description="Environment: dev|prod")
    port: int = Field(default=8080, description="Server port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json|text)")

    # LLM
    llm_base_url: Optional[str] = Field(default=None)
    llm_api_key: Optional[str] = Field(default=None)
    llm_model: str = Field(default="llama3.2:3b")
    llm_timeout_seconds: float = Field(default=90.0)
    llm_default_temperature: Optional[float] = Field(default=None)
    llm_default_max_tokens: Optional[int] = Field(default=None)

    # Storage
    data_dir: str = Field(default="/tmp/column-bucketer", description="Root for uploads and records")
    max_upload_bytes: int = Field(default=200 * 1024 * 1024)

    # Batch mapping
    batch_size: int = Field(default=50, description="Distinct values per classifier call")
    batch_max_attempts: int = Field(default=3)
    batch_retry_delay_seconds: float = Field(default=2.0)

    # Streaming assignment
    progress_row_stride: int = Field(default=5000)
    fuzzy_cache_size: int = Field(default=100_000)

    # Jobs
    max_concurrent_jobs: int = Field(default=2)

    # Sampling / defaults
    sample_scan_limit: int = Field(default=1000)
    sample_size: int = Field(default=25)
    unique_scan_limit: int = Field(default=200_000)
    propose_sample_limit: int = Field(default=500)
    deterministic_bucket_limit: int = Field(default=100)
    bucket_rows_limit: int = Field(default=50)

    @property
    def is_dev(self) -> bool:
        return (self.env or "dev").lower() == "dev"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


settings = Settings()

"""
Copyright (c) 2025 DIER

This software is proprietary and confidential. Unauthorized copying, distribution,
or use of this software is strictly prohibited. This software is provided for
internal use only within organizations for cybersecurity purposes.

For licensing inquiries, contact: licensing@dier.org
"""

"""
Configuration management for the biolog-router service.
"""

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Application settings
    app_name: str = "Bio-Pharma Log Router"
    app_version: str = "0.1.0"
    debug: bool = False

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Rule set (None uses the bundled default_rules.yaml)
    rules_path: Optional[Path] = None
    strict_rules: bool = Field(
        default=False,
        description="Fail the whole load when any source rule set is invalid"
    )

    # Destination output
    output_dir: Path = Path("./data/destinations")
    dead_letter_path: Path = Path("./data/dead_letter/dead_letter.jsonl")

    # Delivery settings
    delivery_timeout: float = Field(default=5.0, description="Per-destination timeout in seconds")
    delivery_max_tries: int = Field(default=3, ge=1)
    delivery_backoff_factor: float = 0.5
    delivery_backoff_max: float = 30.0

    # Performance settings
    max_concurrent_records: int = Field(default=50, ge=1)
    tail_poll_interval: float = 1.0

    # Logging settings
    log_level: str = "INFO"
    log_file: Optional[str] = None
    alert_log_file: Optional[str] = Field(
        default=None,
        description="Separate file receiving only operator diagnostics"
    )

    class Config:
        env_prefix = "BIOLOG_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()

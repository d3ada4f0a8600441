"""Configuration management for the site checker."""

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class CheckerConfig(BaseModel):
    """Main configuration for the site checker."""

    log_level: str = Field(default="INFO", description="Logging level")

    # Pipeline settings
    concurrency: int = Field(default=4, ge=1, description="Max URLs checked at the same time")
    tls_timeout_seconds: float = Field(default=10.0, gt=0, description="TLS connect/handshake timeout")
    navigation_timeout_seconds: float = Field(default=15.0, gt=0, description="Browser navigation timeout")

    # Browser settings
    browser_headless: bool = Field(default=True, description="Run browser in headless mode")
    chromium_path: Optional[str] = Field(default=None, description="Explicit Chromium executable")
    viewport_width: int = Field(default=1920, ge=1, description="Screenshot viewport width")
    viewport_height: int = Field(default=1080, ge=1, description="Screenshot viewport height")
    screenshot_quality: int = Field(default=60, ge=1, le=100, description="JPEG quality")

    # Storage settings
    store_backend: Literal["supabase", "local"] = Field(default="supabase", description="Record/object store backend")
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_key: str = Field(default="", description="Supabase API key")
    records_table: str = Field(default="Url_Project", description="Table holding URL records")
    url_column: str = Field(default="URLs", description="Column keying the records table")
    screenshot_bucket: str = Field(default="screenshot", description="Storage bucket for screenshots")
    screenshot_prefix: str = Field(default="screenshots", description="Object name prefix for screenshots")
    store_timeout_seconds: float = Field(default=30.0, gt=0, description="Store request timeout")

    local_db_path: str = Field(default="data/site_checks.db", description="SQLite path for the local backend")
    local_artifacts_dir: str = Field(default="data/screenshots", description="Screenshot directory for the local backend")
    local_public_base_url: str = Field(default="", description="Public base URL serving local screenshots")


def load_config(config_path: Optional[str] = None) -> CheckerConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("SITE_CHECKS_CONFIG", "config/site_checks.yaml")

    config_data = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    if not isinstance(config_data, dict):
        raise ValueError("Config YAML must be a mapping")

    # Override with environment variables
    env_overrides = {
        "log_level": os.getenv("LOG_LEVEL"),
        "concurrency": os.getenv("SITE_CHECKS_CONCURRENCY"),
        "store_backend": os.getenv("SITE_CHECKS_STORE"),
        "supabase_url": os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL"),
        "supabase_key": os.getenv("SUPABASE_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY"),
        "chromium_path": os.getenv("CHROMIUM_PATH"),
        "browser_headless": os.getenv("BROWSER_HEADLESS"),
    }

    # Filter out None values and convert types
    for key, value in env_overrides.items():
        if value is not None:
            if key in ["concurrency"]:
                value = int(value)
            elif key in ["browser_headless"]:
                value = value.lower() in ("true", "1", "yes")
            config_data[key] = value

    return CheckerConfig(**config_data)

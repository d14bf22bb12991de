"""
Configuration management for mdfetch.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

WaitStrategy = Literal["networkidle", "domcontentloaded", "load"]


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "mdfetch"
    version: str = "0.1.0"
    log_level: str = "INFO"
    logs_dir: str = "logs"


class QualityConfig(BaseModel):
    """Quality gate thresholds.

    Scores at or above fallback_threshold skip the browser renderer entirely.
    Scores below min_score are never persisted.
    """

    model_config = ConfigDict(extra="forbid")

    min_score: int = Field(default=60, ge=0, le=100)
    fallback_threshold: int = Field(default=85, ge=0, le=100)

    @model_validator(mode="after")
    def _check_threshold_order(self) -> "QualityConfig":
        if self.min_score >= self.fallback_threshold:
            raise ValueError(
                f"min_score ({self.min_score}) must be lower than "
                f"fallback_threshold ({self.fallback_threshold})"
            )
        return self


class PathsConfig(BaseModel):
    """Reference store directories."""

    temp_dir: str = ".tmp/mdfetch"
    docs_dir: str = "docs/ai/references"


class BrowserConfig(BaseModel):
    """Fallback renderer configuration."""

    headless: bool = True
    timeout_ms: int = 30000
    wait_strategy: WaitStrategy = "networkidle"
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080


class CrawlerConfig(BaseModel):
    """Plain HTTP fetch and batch configuration."""

    request_timeout: float = 30.0
    batch_concurrency: int = Field(default=5, ge=1)
    accept: str = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
    accept_language: str = "en-US,en;q=0.5"


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_local_overrides(config_dir: Path) -> dict[str, Any]:
    """Load local.yaml overrides.

    Top-level keys correspond to config file names (without .yaml extension).

    Example local.yaml:
        settings:
          quality:
            min_score: 50

    Args:
        config_dir: Configuration directory path.

    Returns:
        Local overrides dictionary.
    """
    local_path = config_dir / "local.yaml"
    if not local_path.exists():
        return {}
    with open(local_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml and apply the settings section of local.yaml.

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    base_path = config_dir / "settings.yaml"
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_overrides = _load_local_overrides(config_dir)
    if "settings" in local_overrides:
        config = _deep_merge(config, local_overrides["settings"])

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with MDFETCH_ and use
    double underscores for nested keys.

    Example:
        MDFETCH_QUALITY__MIN_SCORE=50

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "MDFETCH_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "MDFETCH_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")
        if len(key_path) < 2:
            continue

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


def load_settings(config_dir: str | Path | None = None) -> Settings:
    """Load settings without caching.

    Args:
        config_dir: Configuration directory. Defaults to MDFETCH_CONFIG_DIR or "config".

    Returns:
        Settings instance.
    """
    if config_dir is None:
        config_dir = os.environ.get("MDFETCH_CONFIG_DIR", "config")

    config = _load_yaml_config(Path(config_dir))
    config = _apply_env_overrides(config)

    return Settings(**config)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    return load_settings()


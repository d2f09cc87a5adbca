"""
Configuration management for postercache.
Loads and validates settings from YAML files and environment variables.

Settings are read once at process start and are immutable afterwards
(all section models are frozen).
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


class GeneralConfig(BaseModel):
    """General configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    project_name: str = "postercache"
    version: str = "0.1.0"
    log_level: str = "INFO"
    data_dir: str = "data"
    logs_dir: str = "logs"


class GateConfig(BaseModel):
    """Admission gate configuration.

    capacity must equal the number of independent browser sessions actually
    provisioned. With a single shared Chrome session this is 1.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    capacity: int = Field(default=1, ge=1)


class CacheConfig(BaseModel):
    """Hot tier capacities and maintenance cadence."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    soft_capacity: int = Field(default=1000, ge=1)  # sweep trigger
    target_capacity: int = Field(default=800, ge=1)  # occupancy after a sweep
    hard_capacity: int = Field(default=1200, ge=1)  # evict-one-on-insert bound
    eviction_interval_seconds: float = Field(default=60.0, gt=0)
    lookup_timeout_seconds: float | None = 120.0  # None = wait indefinitely
    warm_on_start: bool = True

    @model_validator(mode="after")
    def validate_capacities(self) -> "CacheConfig":
        """Ensure target <= soft <= hard."""
        if not self.target_capacity <= self.soft_capacity <= self.hard_capacity:
            raise ValueError(
                "cache capacities must satisfy target_capacity <= soft_capacity <= hard_capacity"
            )
        return self


class StorageConfig(BaseModel):
    """Durable store configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True
    database_path: str = "data/postercache.db"
    max_records: int = Field(default=50000, ge=1)  # store sweep trigger
    target_records: int = Field(default=40000, ge=0)  # records kept after a sweep

    @model_validator(mode="after")
    def validate_records(self) -> "StorageConfig":
        """Ensure target_records <= max_records."""
        if self.target_records > self.max_records:
            raise ValueError("storage.target_records must not exceed storage.max_records")
        return self


class BrowserConfig(BaseModel):
    """Browser automation backend configuration.

    The backend is a Chrome instance reachable over CDP; its launch and
    supervision happen outside this process.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    chrome_host: str = "localhost"
    chrome_port: int = 9222
    search_url_template: str = "https://www.movieposters.com/collections/shop?q={query}"
    image_index: int = Field(default=1, ge=0)  # first img on the page is the site logo
    page_load_timeout_ms: int = 45000
    fetch_timeout_seconds: float | None = 90.0


class ServerConfig(BaseModel):
    """HTTP front configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = "127.0.0.1"
    port: int = 8080


class Settings(BaseModel):
    """Main settings container."""

    model_config = ConfigDict(frozen=True)

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


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


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning {} for a missing or empty file."""
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml with local.yaml overrides.

    local.yaml is optional and untracked; its top-level "settings" key is
    merged over settings.yaml:

        settings:
          gate:
            capacity: 2

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config = _load_yaml_file(config_dir / "settings.yaml")
    local_overrides = _load_yaml_file(config_dir / "local.yaml")

    if "settings" in local_overrides:
        config = _deep_merge(config, local_overrides["settings"])

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with POSTERCACHE_ and use
    double underscores for nested keys.

    Example:
        POSTERCACHE_GATE__CAPACITY=2
        POSTERCACHE_CACHE__LOOKUP_TIMEOUT_SECONDS=none

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "POSTERCACHE_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "POSTERCACHE_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")
        if len(key_path) < 2:
            # Only section-scoped keys map onto settings
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
            elif value.lower() in ("none", "null"):
                current[final_key] = None
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


def load_settings(config_dir: str | Path | None = None) -> Settings:
    """Build settings from YAML and environment without caching.

    Args:
        config_dir: Configuration directory. Defaults to $POSTERCACHE_CONFIG_DIR
            or "config".

    Returns:
        Settings instance.
    """
    if config_dir is None:
        config_dir = os.environ.get("POSTERCACHE_CONFIG_DIR", "config")

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


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    # Assuming this file is at postercache/utils/config.py
    return Path(__file__).parent.parent.parent


def ensure_directories(settings: Settings | None = None) -> None:
    """Ensure data and log directories exist."""
    settings = settings or get_settings()
    root = get_project_root()

    dirs = [
        root / settings.general.data_dir,
        root / settings.general.logs_dir,
    ]

    for dir_path in dirs:
        dir_path.mkdir(parents=True, exist_ok=True)

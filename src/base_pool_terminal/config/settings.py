"""Configuration management for the pool terminal."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.constants import BASE_CHAIN_ID

DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
PROFILE_ENV_VAR = "TERMINAL_PROFILE"
API_KEY_ENV_VAR = "CAMBRIAN_API_KEY"
DEFAULT_PROFILE = "default"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get(DEFAULT_PROFILE, {}))
    requested = (os.getenv(PROFILE_ENV_VAR) or DEFAULT_PROFILE).lower()
    if requested != DEFAULT_PROFILE and isinstance(data.get(requested), dict):
        return _deep_merge(base_section, cast(Dict[str, Any], data[requested]))
    if base_section:
        return base_section
    return data


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        return {}, path
    merged = _select_profile(payload)
    if not isinstance(merged, dict):
        return {}, path
    return dict(merged), path


class UpstreamConfig(BaseModel):
    """Connection settings for the Cambrian analytics API."""

    base_url: AnyHttpUrl = Field(default="https://opabinia.cambrian.network/api/v1")
    api_key: Optional[str] = None
    chain_id: int = Field(default=BASE_CHAIN_ID, ge=1)
    http_timeout: float = Field(default=10.0, ge=1.0, le=60.0)
    cache_ttl_seconds: int = Field(default=60, ge=0)
    price_cache_ttl_seconds: int = Field(default=10, ge=0)
    cache_max_entries: int = Field(default=512, ge=1)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0)

    @field_validator("http_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value) -> float:
        if isinstance(value, str):
            return float(value)
        return value


class EnrichmentConfig(BaseModel):
    """Bounds for the per-pool detail enrichment pass."""

    max_to_enrich: int = Field(default=30, ge=0)
    batch_size: int = Field(default=10, ge=1, le=64)
    detail_timeout_seconds: float = Field(default=15.0, gt=0.0, le=120.0)


class SearchConfig(BaseModel):
    """Knobs for a single token search."""

    listing_limit: int = Field(default=100, ge=1, le=1_000)
    enabled_sources: List[str] = Field(
        default_factory=lambda: ["aerodrome", "uniswap", "pancake", "sushi", "alien"]
    )
    include_price: bool = True
    include_holders: bool = True
    price_history_hours: int = Field(default=24, ge=0, le=24 * 30)
    top_holders_limit: int = Field(default=10, ge=1, le=100)

    @field_validator("enabled_sources", mode="before")
    @classmethod
    def _split_sources(cls, value):
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        return [str(item).strip().lower() for item in value]


class MonitoringConfig(BaseModel):
    """Logging configuration."""

    log_level: str = Field(default="INFO")
    event_history_size: int = Field(default=500, ge=1)


class DashboardConfig(BaseModel):
    """Settings for the JSON service."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
    config_file: Optional[Path] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, path = _load_toml_config()
            if path is not None:
                payload.setdefault("config_file", str(path))
            return payload

        # Environment variables win over static config file defaults.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_api_key_fallback(self) -> "AppConfig":
        if not self.upstream.api_key:
            api_key = os.getenv(API_KEY_ENV_VAR)
            if api_key and api_key.strip():
                self.upstream.api_key = api_key.strip()
        return self


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "DashboardConfig",
    "EnrichmentConfig",
    "MonitoringConfig",
    "SearchConfig",
    "UpstreamConfig",
    "get_app_config",
]

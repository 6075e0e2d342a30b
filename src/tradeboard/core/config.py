"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    field_validator,
    model_validator,
)

from tradeboard.core.exceptions import ConfigError
from tradeboard.core.models import ProviderName


class StorageConfig(BaseModel):
    """Persistent byte store and write-coalescing configuration."""

    model_config = ConfigDict(frozen=True)

    data_dir: str = "./data"
    store_key: str = "tradeboard_db"
    legacy_path: str | None = "./data/trading_app_db.b64"
    save_debounce_seconds: float = 2.0

    @field_validator("save_debounce_seconds")
    @classmethod
    def debounce_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("save_debounce_seconds must be >= 0")
        return v

    @field_validator("store_key")
    @classmethod
    def key_is_filename(cls, v: str) -> str:
        if not v or "/" in v or "\\" in v:
            raise ValueError("store_key must be a plain file name")
        return v


class FreshnessConfig(BaseModel):
    """Per-kind max ages before cached data triggers a network refresh."""

    model_config = ConfigDict(frozen=True)

    price_stale_minutes: float = 5
    fundamentals_stale_days: float = 7
    quote_ttl_seconds: float = 60

    @field_validator("price_stale_minutes", "fundamentals_stale_days", "quote_ttl_seconds")
    @classmethod
    def positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("freshness thresholds must be > 0")
        return v


class RateLimitConfig(BaseModel):
    """Fixed-window call budget for one provider."""

    model_config = ConfigDict(frozen=True)

    max_calls: int
    window_seconds: float

    @field_validator("max_calls")
    @classmethod
    def max_calls_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_calls must be >= 1")
        return v

    @field_validator("window_seconds")
    @classmethod
    def window_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("window_seconds must be > 0")
        return v


def _default_rate_limits() -> dict[str, RateLimitConfig]:
    return {
        ProviderName.YAHOO: RateLimitConfig(max_calls=120, window_seconds=60),
        ProviderName.ALPHA_VANTAGE: RateLimitConfig(max_calls=25, window_seconds=86_400),
        ProviderName.MASSIVE: RateLimitConfig(max_calls=5, window_seconds=60),
    }


class ProvidersConfig(BaseModel):
    """Market data provider ordering, budgets and credentials."""

    model_config = ConfigDict(frozen=True)

    price_order: list[ProviderName] = [
        ProviderName.YAHOO,
        ProviderName.ALPHA_VANTAGE,
        ProviderName.MASSIVE,
    ]
    fundamentals_order: list[ProviderName] = [
        ProviderName.ALPHA_VANTAGE,
        ProviderName.MASSIVE,
    ]
    quote_order: list[ProviderName] = [
        ProviderName.YAHOO,
        ProviderName.ALPHA_VANTAGE,
    ]
    rate_limits: dict[ProviderName, RateLimitConfig] = _default_rate_limits()

    alpha_vantage_api_key: str | None = None
    massive_api_key: str | None = None
    yahoo_base_url: str = "https://query1.finance.yahoo.com"
    yahoo_requests_per_second: float = 2.0
    request_timeout: float = 15.0
    history_days: int = 365

    @field_validator("price_order", "fundamentals_order", "quote_order")
    @classmethod
    def order_unique(cls, v: list[ProviderName]) -> list[ProviderName]:
        if not v:
            raise ValueError("provider order must name at least one provider")
        if len(set(v)) != len(v):
            raise ValueError("provider order must not repeat a provider")
        return v

    @field_validator("history_days")
    @classmethod
    def history_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("history_days must be >= 1")
        return v

    @model_validator(mode="after")
    def every_provider_has_budget(self) -> ProvidersConfig:
        named = set(self.price_order) | set(self.fundamentals_order) | set(self.quote_order)
        missing = sorted(str(p) for p in named if p not in self.rate_limits)
        if missing:
            raise ValueError(f"rate_limits missing for providers: {', '.join(missing)}")
        return self


class RefreshConfig(BaseModel):
    """Batch refresh configuration."""

    model_config = ConfigDict(frozen=True)

    concurrency: int = 4

    @field_validator("concurrency")
    @classmethod
    def concurrency_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("concurrency must be >= 1")
        return v


class TradeboardConfig(BaseModel):
    """Root configuration for the tradeboard data engine."""

    model_config = ConfigDict(frozen=True)

    storage: StorageConfig = StorageConfig()
    freshness: FreshnessConfig = FreshnessConfig()
    providers: ProvidersConfig = ProvidersConfig()
    refresh: RefreshConfig = RefreshConfig()


DEFAULT_CONFIG_FILE = "tradeboard.yml"
CONFIG_ENV_VAR = "TRADEBOARD_CONFIG"


def load_config(
    config_path: str | None = None,
    env_prefix: str = "TRADEBOARD_",
) -> TradeboardConfig:
    """Build the configuration from defaults, a YAML file and the environment.

    Later sources win: built-in defaults, then the YAML file (``config_path``,
    else ``$TRADEBOARD_CONFIG``, else ``./tradeboard.yml`` when present),
    then ``TRADEBOARD_*`` environment variables. Nested fields use a double
    underscore:

        TRADEBOARD_FRESHNESS__QUOTE_TTL_SECONDS=30
        TRADEBOARD_PROVIDERS__PRICE_ORDER=yahoo,massive

    Raises:
        ConfigError: The file is missing or unreadable, or a value fails validation.
    """
    path = _find_config_file(config_path)
    data = _read_yaml(path) if path is not None else {}
    data = _deep_merge(data, env_overrides(env_prefix))
    try:
        return TradeboardConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid configuration: {e}",
            context={"source": "load_config", "file": str(path) if path else None},
        ) from e


def _find_config_file(explicit: str | None) -> Path | None:
    if explicit is not None:
        origin, candidate = "config_path", explicit
    elif os.environ.get(CONFIG_ENV_VAR):
        origin, candidate = CONFIG_ENV_VAR, os.environ[CONFIG_ENV_VAR]
    else:
        default = Path(DEFAULT_CONFIG_FILE)
        return default if default.exists() else None

    path = Path(candidate)
    if not path.exists():
        raise ConfigError(
            f"Config file not found: {candidate}",
            context={"field": origin, "value": candidate},
        )
    return path


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(
            f"Failed to read config file {path}: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"YAML config must be a mapping, got {type(data).__name__}",
            context={"field": "config_file", "value": str(path)},
        )
    return data


def env_overrides(
    prefix: str = "TRADEBOARD_",
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Nested override dict from ``prefix``-ed environment variables."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for key, raw in environ.items():
        if not key.startswith(prefix):
            continue
        remainder = key[len(prefix) :].lower()
        if remainder == "config":
            continue
        *sections, name = remainder.split("__")
        node = overrides
        for section in sections:
            if not isinstance(node.get(section), dict):
                node[section] = {}
            node = node[section]
        node[name] = _cast_env_value(name, raw)
    return overrides


def _cast_env_value(name: str, raw: str) -> Any:
    # Keys stay strings even when all digits; orders are always lists.
    if name.endswith("_api_key"):
        return raw
    if name.endswith("_order"):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return _auto_cast(raw)


def _auto_cast(value: str) -> str | int | float | bool:
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def _deep_merge(base: dict[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged

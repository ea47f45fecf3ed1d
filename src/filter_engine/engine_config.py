# This module defines the runtime configuration of the filter engine.
# It exists so debounce windows, cache lifetimes, backend timeouts, and persistence paths are tuned in one place.
# The config is resolved from repo YAML defaults plus FILTER_ENGINE_* environment overrides.
# Invalid values fail at load time instead of surfacing later as odd cache or retry behaviour.

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import yaml

from src.common.settings import Settings, load_settings
from src.filter_engine.field_map import DEFAULT_FIELD_MAP
from src.filter_engine.normalization import (
    AGGREGATED_ENDPOINT,
    DASHBOARD_DATA_ENDPOINT,
    RECORDS_ENDPOINT,
)


def _load_yaml(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config at {path} must be a mapping, got: {type(loaded).__name__}")
    return dict(loaded)


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    value = cfg.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section {name!r} must be a mapping, got: {type(value).__name__}")
    return dict(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value (true/false), got: {value!r}")


def _float_map(raw: Any, name: str) -> dict[str, float]:
    if not isinstance(raw, dict):
        raise ValueError(f"{name} must be a mapping of endpoint to seconds, got: {type(raw).__name__}")
    return {str(key): float(value) for key, value in raw.items()}


@dataclass(frozen=True)
class FilterEngineConfig:
    api_base_url: str
    request_timeout_seconds: float = 30
    endpoint_timeouts: dict[str, float] = field(
        default_factory=lambda: {AGGREGATED_ENDPOINT: 60.0, DASHBOARD_DATA_ENDPOINT: 90.0}
    )
    max_concurrent_requests: int = 6
    max_retries: int = 2
    retry_backoff_seconds: float = 0.5

    debounce_ms: int = 150
    default_ttl_seconds: float = 300
    endpoint_ttls: dict[str, float] = field(
        default_factory=lambda: {AGGREGATED_ENDPOINT: 60.0, RECORDS_ENDPOINT: 30.0}
    )
    unfiltered_ttl_seconds: float = 600
    unfiltered_endpoints: dict[str, str] = field(
        default_factory=lambda: {AGGREGATED_ENDPOINT: DASHBOARD_DATA_ENDPOINT}
    )
    known_good_capacity: int = 256

    field_map: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FIELD_MAP))

    snapshots_enabled: bool = True
    snapshot_dir: str = ".filter_engine/snapshots"
    snapshot_max_age_days: int = 7
    history_path: str = ".filter_engine/history.json"
    max_recent: int = 10
    max_favorites: int = 20

    def __post_init__(self) -> None:
        if not self.api_base_url:
            raise ValueError("api_base_url must be a non-empty URL.")
        if self.request_timeout_seconds <= 0:
            raise ValueError(f"request_timeout_seconds must be > 0, got {self.request_timeout_seconds}")
        if self.max_concurrent_requests <= 0:
            raise ValueError(f"max_concurrent_requests must be > 0, got {self.max_concurrent_requests}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {self.debounce_ms}")
        ttls = [self.default_ttl_seconds, self.unfiltered_ttl_seconds, *self.endpoint_ttls.values()]
        if any(ttl <= 0 for ttl in ttls):
            raise ValueError("Every cache TTL must be > 0 seconds.")
        if self.known_good_capacity <= 0:
            raise ValueError(f"known_good_capacity must be > 0, got {self.known_good_capacity}")
        if self.snapshot_max_age_days <= 0:
            raise ValueError(f"snapshot_max_age_days must be > 0, got {self.snapshot_max_age_days}")
        if self.max_recent <= 0 or self.max_favorites <= 0:
            raise ValueError("max_recent and max_favorites must be > 0.")

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    @property
    def snapshot_max_age(self) -> timedelta:
        return timedelta(days=self.snapshot_max_age_days)

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_base_url": self.api_base_url,
            "request_timeout_seconds": self.request_timeout_seconds,
            "endpoint_timeouts": dict(self.endpoint_timeouts),
            "max_concurrent_requests": self.max_concurrent_requests,
            "max_retries": self.max_retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "debounce_ms": self.debounce_ms,
            "default_ttl_seconds": self.default_ttl_seconds,
            "endpoint_ttls": dict(self.endpoint_ttls),
            "unfiltered_ttl_seconds": self.unfiltered_ttl_seconds,
            "unfiltered_endpoints": dict(self.unfiltered_endpoints),
            "known_good_capacity": self.known_good_capacity,
            "field_map": dict(self.field_map),
            "snapshots_enabled": self.snapshots_enabled,
            "snapshot_dir": self.snapshot_dir,
            "snapshot_max_age_days": self.snapshot_max_age_days,
            "history_path": self.history_path,
            "max_recent": self.max_recent,
            "max_favorites": self.max_favorites,
        }


def load_engine_config(
    *,
    config_path: str | None = None,
    load_env: bool = True,
    settings: Settings | None = None,
) -> FilterEngineConfig:
    if settings is None:
        settings = load_settings(load_env=load_env)

    path = config_path or settings.FILTER_ENGINE_CONFIG_PATH
    if config_path is None and not os.path.exists(path):
        cfg: dict[str, Any] = {}
    else:
        cfg = _load_yaml(path)

    api_cfg = _section(cfg, "api")
    loader_cfg = _section(cfg, "loader")
    persistence_cfg = _section(cfg, "persistence")
    defaults = FilterEngineConfig(api_base_url="http://localhost")

    api_base_url = _env_str(
        "FILTER_ENGINE_API_BASE_URL",
        settings.OMBUDSMAN_API_BASE_URL or api_cfg.get("base_url"),
    )
    if not api_base_url:
        raise ValueError(
            "No backend URL configured. Set OMBUDSMAN_API_BASE_URL or api.base_url in the engine config."
        )

    field_map = dict(defaults.field_map)
    raw_field_map = cfg.get("field_map") or {}
    if not isinstance(raw_field_map, dict):
        raise ValueError("field_map must be a mapping of UI field to backend field.")
    field_map.update({str(key): str(value) for key, value in raw_field_map.items()})

    return FilterEngineConfig(
        api_base_url=str(api_base_url).rstrip("/"),
        request_timeout_seconds=_env_float(
            "FILTER_ENGINE_TIMEOUT_SECONDS",
            float(api_cfg.get("timeout_seconds", defaults.request_timeout_seconds)),
        ),
        endpoint_timeouts=_float_map(
            api_cfg.get("endpoint_timeouts", defaults.endpoint_timeouts), "api.endpoint_timeouts"
        ),
        max_concurrent_requests=_env_int(
            "FILTER_ENGINE_MAX_CONCURRENT_REQUESTS",
            int(api_cfg.get("max_concurrent_requests", defaults.max_concurrent_requests)),
        ),
        max_retries=_env_int("FILTER_ENGINE_MAX_RETRIES", int(api_cfg.get("max_retries", defaults.max_retries))),
        retry_backoff_seconds=_env_float(
            "FILTER_ENGINE_RETRY_BACKOFF_SECONDS",
            float(api_cfg.get("retry_backoff_seconds", defaults.retry_backoff_seconds)),
        ),
        debounce_ms=_env_int("FILTER_ENGINE_DEBOUNCE_MS", int(loader_cfg.get("debounce_ms", defaults.debounce_ms))),
        default_ttl_seconds=_env_float(
            "FILTER_ENGINE_DEFAULT_TTL_SECONDS",
            float(loader_cfg.get("default_ttl_seconds", defaults.default_ttl_seconds)),
        ),
        endpoint_ttls=_float_map(loader_cfg.get("endpoint_ttls", defaults.endpoint_ttls), "loader.endpoint_ttls"),
        unfiltered_ttl_seconds=_env_float(
            "FILTER_ENGINE_UNFILTERED_TTL_SECONDS",
            float(loader_cfg.get("unfiltered_ttl_seconds", defaults.unfiltered_ttl_seconds)),
        ),
        unfiltered_endpoints={
            str(key): str(value)
            for key, value in (loader_cfg.get("unfiltered_endpoints") or defaults.unfiltered_endpoints).items()
        },
        known_good_capacity=_env_int(
            "FILTER_ENGINE_KNOWN_GOOD_CAPACITY",
            int(loader_cfg.get("known_good_capacity", defaults.known_good_capacity)),
        ),
        field_map=field_map,
        snapshots_enabled=_env_bool(
            "FILTER_ENGINE_SNAPSHOTS_ENABLED",
            bool(persistence_cfg.get("snapshots_enabled", defaults.snapshots_enabled)),
        ),
        snapshot_dir=str(
            _env_str("FILTER_ENGINE_SNAPSHOT_DIR", persistence_cfg.get("snapshot_dir", defaults.snapshot_dir))
        ),
        snapshot_max_age_days=_env_int(
            "FILTER_ENGINE_SNAPSHOT_MAX_AGE_DAYS",
            int(persistence_cfg.get("snapshot_max_age_days", defaults.snapshot_max_age_days)),
        ),
        history_path=str(
            _env_str("FILTER_ENGINE_HISTORY_PATH", persistence_cfg.get("history_path", defaults.history_path))
        ),
        max_recent=int(persistence_cfg.get("max_recent", defaults.max_recent)),
        max_favorites=int(persistence_cfg.get("max_favorites", defaults.max_favorites)),
    )

"""Cube Map configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: CUBEMAP_<SECTION>_<KEY> (uppercase).
The legacy deployment variables (GLITCHCUBE_API_URL, CACHE_DURATION_SECONDS,
UPDATE_INTERVAL_SECONDS, PORT) are honored as well.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 9292
    env: str = "dev"  # "dev" or "prod"


@dataclass
class UpstreamConfig:
    base_url: str = "http://localhost:4567"
    location_path: str = "/api/v1/gps/location.json"
    read_timeout: float = 30.0


@dataclass
class CacheConfig:
    duration_seconds: float = 300.0
    client_max_age: int = 60  # Cache-Control max-age on /api/cube_location


@dataclass
class PollerConfig:
    update_interval_seconds: float = 300.0
    slow_interval_seconds: float = 1800.0
    offline_interval_seconds: float = 3600.0
    max_retries: int = 3
    retry_backoff_seconds: float = 5.0
    max_history_items: int = 100
    persisted_history_items: int = 20
    storage_key: str = "glitchcube_cache"
    snapshot_dir: str = "data/snapshots"


@dataclass
class GeoJsonConfig:
    data_dir: str = "public/geojson"
    max_age: int = 3600


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    geojson: GeoJsonConfig = field(default_factory=GeoJsonConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = ("server", "upstream", "cache", "poller", "geojson", "logging")


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        # Legacy names first so the CUBEMAP_* variables win.
        "GLITCHCUBE_API_URL": lambda v: setattr(config.upstream, "base_url", v),
        "CACHE_DURATION_SECONDS": lambda v: setattr(config.cache, "duration_seconds", float(v)),
        "UPDATE_INTERVAL_SECONDS": lambda v: setattr(config.poller, "update_interval_seconds", float(v)),
        "PORT": lambda v: setattr(config.server, "port", int(v)),
        "CUBEMAP_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "CUBEMAP_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "CUBEMAP_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "CUBEMAP_UPSTREAM_URL": lambda v: setattr(config.upstream, "base_url", v),
        "CUBEMAP_UPSTREAM_PATH": lambda v: setattr(config.upstream, "location_path", v),
        "CUBEMAP_UPSTREAM_READ_TIMEOUT": lambda v: setattr(config.upstream, "read_timeout", float(v)),
        "CUBEMAP_CACHE_DURATION": lambda v: setattr(config.cache, "duration_seconds", float(v)),
        "CUBEMAP_CACHE_CLIENT_MAX_AGE": lambda v: setattr(config.cache, "client_max_age", int(v)),
        "CUBEMAP_POLLER_INTERVAL": lambda v: setattr(config.poller, "update_interval_seconds", float(v)),
        "CUBEMAP_POLLER_MAX_RETRIES": lambda v: setattr(config.poller, "max_retries", int(v)),
        "CUBEMAP_POLLER_SNAPSHOT_DIR": lambda v: setattr(config.poller, "snapshot_dir", v),
        "CUBEMAP_GEOJSON_DIR": lambda v: setattr(config.geojson, "data_dir", v),
        "CUBEMAP_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "CUBEMAP_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("CUBEMAP_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section in _SECTIONS:
            target = getattr(config, section)
            for k, v in (raw.get(section) or {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config

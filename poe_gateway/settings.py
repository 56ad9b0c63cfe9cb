"""Runtime settings resolved from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .config_loader import load_env_values, resolve_config_dir

logger = logging.getLogger("poe-gateway")

# Default values
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_POE_BASE_URL = "https://api.poe.com"
DEFAULT_POE_FILE_UPLOAD_URL = "https://www.quora.com/poe_api/file_upload_3RD_PARTY_POST"
DEFAULT_CACHE_TTL_SECONDS = 3 * 24 * 60 * 60
DEFAULT_CACHE_SIZE_MB = 100
DEFAULT_RATE_LIMIT_MS = 100  # 0 disables pacing
DEFAULT_MAX_REQUEST_SIZE = 1024 * 1024 * 1024
DEFAULT_UPSTREAM_TIMEOUT_SECONDS = 600.0


@dataclass(frozen=True)
class Settings:
    """Resolved gateway settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    poe_base_url: str = DEFAULT_POE_BASE_URL
    poe_file_upload_url: str = DEFAULT_POE_FILE_UPLOAD_URL
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    cache_capacity_bytes: int = DEFAULT_CACHE_SIZE_MB * 1024 * 1024
    rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS
    max_request_bytes: int = DEFAULT_MAX_REQUEST_SIZE
    upstream_timeout_seconds: float = DEFAULT_UPSTREAM_TIMEOUT_SECONDS
    config_dir: Path = Path("./")
    log_level: str = "INFO"

    @property
    def pacing_interval_seconds(self) -> float:
        return max(self.rate_limit_ms, 0) / 1000.0


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Resolution order for each variable:
    1. The given mapping (os.environ by default)
    2. A .env file in CONFIG_DIR
    3. Built-in defaults
    """
    source: dict[str, str] = dict(os.environ if env is None else env)
    config_dir = resolve_config_dir(source.get("CONFIG_DIR"))
    dotenv = load_env_values(config_dir / ".env")
    merged = {**dotenv, **source}

    return Settings(
        host=merged.get("HOST") or DEFAULT_HOST,
        port=_get_int(merged, "PORT", DEFAULT_PORT),
        poe_base_url=(merged.get("POE_BASE_URL") or DEFAULT_POE_BASE_URL).rstrip("/"),
        poe_file_upload_url=merged.get("POE_FILE_UPLOAD_URL") or DEFAULT_POE_FILE_UPLOAD_URL,
        cache_ttl_seconds=_get_float(merged, "URL_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS),
        cache_capacity_bytes=_get_int(merged, "URL_CACHE_SIZE_MB", DEFAULT_CACHE_SIZE_MB) * 1024 * 1024,
        rate_limit_ms=_get_int(merged, "RATE_LIMIT_MS", DEFAULT_RATE_LIMIT_MS),
        max_request_bytes=_get_int(merged, "MAX_REQUEST_SIZE", DEFAULT_MAX_REQUEST_SIZE),
        upstream_timeout_seconds=_get_float(
            merged, "UPSTREAM_TIMEOUT_SECONDS", DEFAULT_UPSTREAM_TIMEOUT_SECONDS
        ),
        config_dir=config_dir,
        log_level=(merged.get("LOG_LEVEL") or "INFO").upper(),
    )


def _get_int(config: Mapping[str, Any], key: str, default: int) -> int:
    """Get an integer value from config with fallback."""
    value = config.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning("Invalid integer for %s=%r; using default %s", key, value, default)
        return default


def _get_float(config: Mapping[str, Any], key: str, default: float) -> float:
    """Get a float value from config with fallback."""
    value = config.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        logger.warning("Invalid number for %s=%r; using default %s", key, value, default)
        return default

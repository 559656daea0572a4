"""medlink configuration.

Loads and validates settings from ~/.medlink/config.json. Uses Pydantic for
schema validation with defaults tuned for a high-latency radio/satellite link.
Every knob can be overridden by the embedding application, either through the
config file or by passing a ``ResilienceConfig`` directly.

Usage:
    from medlink.config import get_config, save_config

    config = get_config()
    print(config.base_url)
    print(config.max_retries)

    config.max_retries = 5
    save_config(config)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".medlink" / "config.json"
BASE_URL_ENV = "MEDLINK_BASE_URL"
DEFAULT_BASE_URL = "http://localhost:3001/api"


class ResilienceConfig(BaseModel):
    """Settings for the resilient API access layer.

    Durations are in seconds.

    Attributes:
        base_url: Backend REST base URL; relative request paths are joined to it.
        request_timeout: Per-attempt timeout for ordinary requests.
        max_retries: Retries after the first attempt (3 means 4 attempts).
        retry_base_delay: Backoff base; attempt N waits base * 2**N plus jitter.
        retry_jitter: Upper bound of the uniform jitter added to each backoff.
        health_check_path: Liveness probe path relative to base_url.
        health_check_interval: Seconds between liveness probes.
        health_check_timeout: Timeout of a single liveness probe.
        ws_reconnect_base: Duplex reconnect backoff base.
        ws_reconnect_max: Cap on the duplex reconnect backoff (before jitter).
        ws_reconnect_jitter: Upper bound of the reconnect jitter.
        ws_max_retries: Reconnect attempts before the duplex manager gives up.
        token_refresh_skew_seconds: Refresh when the access token expires sooner.
        refresh_path: Token refresh endpoint relative to base_url.
        refresh_timeout: Timeout of the single refresh call.
        retry_on_unauthorized: Force one refresh and re-send on a 401 response.
        device_id: Optional value for the X-Device-ID header.
        user_agent: User-Agent header sent with every request.
    """

    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = Field(default=30.0, gt=0)

    max_retries: int = Field(default=3, ge=0, le=20)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_jitter: float = Field(default=0.5, ge=0)

    health_check_path: str = "/health"
    health_check_interval: float = Field(default=30.0, gt=0)
    health_check_timeout: float = Field(default=5.0, gt=0)

    ws_reconnect_base: float = Field(default=1.0, ge=0)
    ws_reconnect_max: float = Field(default=30.0, ge=0)
    ws_reconnect_jitter: float = Field(default=1.0, ge=0)
    ws_max_retries: int = Field(default=10, ge=0)

    token_refresh_skew_seconds: float = Field(default=60.0, ge=0)
    refresh_path: str = "/auth/refresh"
    refresh_timeout: float = Field(default=10.0, gt=0)
    retry_on_unauthorized: bool = True

    device_id: str | None = None
    user_agent: str = "medlink/0.1"

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @field_validator("health_check_path", "refresh_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Relative endpoint paths always start with a slash."""
        return v if v.startswith("/") else f"/{v}"

    def url_for(self, path: str) -> str:
        """Join a relative path onto base_url; absolute URLs pass through."""
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"


_config: ResilienceConfig | None = None
_config_lock = threading.Lock()


def load_config(config_path: Path | None = None) -> ResilienceConfig:
    """Load configuration from file, return defaults if missing/invalid.

    ``MEDLINK_BASE_URL`` in the environment overrides the file's base_url.

    Args:
        config_path: Optional path to config file. Defaults to ~/.medlink/config.json.

    Returns:
        ResilienceConfig instance with loaded or default values.
    """
    path = config_path or CONFIG_PATH
    data: dict[str, Any] = {}

    if path.exists():
        try:
            with path.open() as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in config file %s: %s, using defaults", path, e)
            data = {}
        except OSError as e:
            logger.warning("Cannot read config file %s: %s, using defaults", path, e)
            data = {}
    else:
        logger.debug("Config file not found at %s, using defaults", path)

    env_base_url = os.environ.get(BASE_URL_ENV)
    if env_base_url:
        data["base_url"] = env_base_url

    try:
        return ResilienceConfig.model_validate(data)
    except ValidationError as e:
        logger.warning("Config validation failed: %s, using defaults", e)
        return ResilienceConfig()


def save_config(config: ResilienceConfig, config_path: Path | None = None) -> bool:
    """Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to config file. Defaults to ~/.medlink/config.json.

    Returns:
        True if saved successfully, False otherwise.
    """
    path = config_path or CONFIG_PATH

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            json.dump(config.model_dump(), f, indent=2)

        # Owner-only: the file may carry a device id
        os.chmod(path, 0o600)

        logger.debug("Configuration saved to %s", path)
        return True

    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        return False


def get_config() -> ResilienceConfig:
    """Get singleton configuration instance (double-check locking)."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def reset_config() -> None:
    """Reset singleton configuration for testing."""
    global _config
    with _config_lock:
        _config = None


__all__ = [
    "CONFIG_PATH",
    "BASE_URL_ENV",
    "DEFAULT_BASE_URL",
    "ResilienceConfig",
    "load_config",
    "save_config",
    "get_config",
    "reset_config",
]

# =============================================================================
# fin_core/data_layer/config.py
# Data layer configuration
# =============================================================================
"""
DataLayerConfig - externally configurable settings for the data layer.

Values come from keyword arguments, or from the environment (and an optional
``.env`` file) through :meth:`DataLayerConfig.from_env`. Durations are in
seconds.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
import logging

from dotenv import load_dotenv

from fin_core.errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_API_URL = "http://localhost:3001/api"
DEFAULT_FALLBACK_URL = "http://localhost:3000/api"
DEFAULT_STORAGE_PATH = Path("local_data") / "fin_core.db"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigurationError(
        f"Invalid boolean for {name}: {raw!r}",
        config_key=name,
        expected_type="bool",
    )


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            config_key=name,
            expected_type=cast.__name__,
        ) from None


@dataclass
class DataLayerConfig:
    """Settings for DataLayer and the components it composes."""
    api_base_url: str = DEFAULT_API_URL
    fallback_base_url: str = DEFAULT_FALLBACK_URL
    cache_enabled: bool = True
    offline_enabled: bool = True
    default_ttl: float = 5 * 60          # 5 minutes
    max_retries: int = 3
    retry_delay: float = 1.0
    request_timeout: float = 10.0
    cache_max_entries: int = 1000
    cache_cleanup_interval: float = 60.0
    sync_interval: float = 30.0
    storage_path: Path = field(default_factory=lambda: DEFAULT_STORAGE_PATH)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError for values that can't work."""
        if not self.api_base_url:
            raise ConfigurationError("api_base_url must not be empty", config_key="api_base_url")
        if self.default_ttl <= 0:
            raise ConfigurationError("default_ttl must be positive", config_key="default_ttl")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", config_key="max_retries")
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay must be >= 0", config_key="retry_delay")
        if self.cache_max_entries < 1:
            raise ConfigurationError("cache_max_entries must be >= 1", config_key="cache_max_entries")
        for name in ("request_timeout", "cache_cleanup_interval", "sync_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", config_key=name)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> DataLayerConfig:
        """
        Build a config from environment variables.

        Reads FIN_API_URL (or NEXT_PUBLIC_API_URL), FIN_FALLBACK_API_URL,
        FIN_CACHE_ENABLED, FIN_OFFLINE_ENABLED, FIN_CACHE_TTL, FIN_MAX_RETRIES,
        FIN_RETRY_DELAY and FIN_STORAGE_PATH. Keyword overrides win.
        """
        load_dotenv(env_file)

        values: Dict[str, Any] = {
            "api_base_url": os.getenv("FIN_API_URL") or os.getenv("NEXT_PUBLIC_API_URL") or DEFAULT_API_URL,
            "fallback_base_url": os.getenv("FIN_FALLBACK_API_URL") or DEFAULT_FALLBACK_URL,
            "cache_enabled": _env_bool("FIN_CACHE_ENABLED", True),
            "offline_enabled": _env_bool("FIN_OFFLINE_ENABLED", True),
            "default_ttl": _env_number("FIN_CACHE_TTL", 5 * 60, float),
            "max_retries": _env_number("FIN_MAX_RETRIES", 3, int),
            "retry_delay": _env_number("FIN_RETRY_DELAY", 1.0, float),
        }
        storage_path = os.getenv("FIN_STORAGE_PATH")
        if storage_path:
            values["storage_path"] = Path(storage_path)

        values.update(overrides)
        return cls(**values)

    def merged(self, partial: Mapping[str, Any]) -> DataLayerConfig:
        """
        Return a copy with the given fields replaced.

        Raises:
            ConfigurationError: for keys that aren't config fields
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(partial) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                details={"unknown_keys": unknown},
            )
        return replace(self, **dict(partial))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

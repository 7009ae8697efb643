"""
Cache configuration.

Values are read once from the environment (optionally seeded from a .env
file) when the cache service is built. All durations are in seconds.
"""
import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


class CacheConfig(BaseModel):
    """AI response cache settings."""

    model_config = ConfigDict(frozen=True)

    max_size: int = Field(default=500, gt=0, description="Maximum number of cached entries")
    default_ttl: float = Field(default=3600, gt=0, description="TTL for untyped entries (seconds)")
    chat_ttl: float = Field(default=1800, gt=0, description="TTL for chat replies (seconds)")
    diagnosis_ttl: float = Field(default=86400, gt=0, description="TTL for diagnosis results (seconds)")
    planning_ttl: float = Field(default=43200, gt=0, description="TTL for crop plans (seconds)")
    enabled: bool = Field(default=True, description="Global kill-switch")
    cleanup_interval: float = Field(default=300, gt=0, description="Expiry sweep period (seconds)")
    single_flight: bool = Field(
        default=False,
        description="Share one supplier call between concurrent misses on the same key",
    )

    def merged(self, **changes) -> "CacheConfig":
        """Return a validated copy with ``changes`` applied."""
        return CacheConfig(**{**self.model_dump(), **changes})


def _env_number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %s", name, raw, default)
        return default
    return value


def load_cache_config(env: Optional[Mapping[str, str]] = None) -> CacheConfig:
    """
    Build a CacheConfig from environment variables.

    AI_CACHE_ENABLED disables the cache only when set to "false"; every
    other value (or absence) leaves it on.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    defaults = CacheConfig()
    return CacheConfig(
        max_size=_env_number(env, "AI_CACHE_MAX_SIZE", defaults.max_size, cast=int),
        default_ttl=_env_number(env, "AI_CACHE_TTL", defaults.default_ttl),
        chat_ttl=_env_number(env, "AI_CACHE_CHAT_TTL", defaults.chat_ttl),
        diagnosis_ttl=_env_number(env, "AI_CACHE_DIAGNOSIS_TTL", defaults.diagnosis_ttl),
        planning_ttl=_env_number(env, "AI_CACHE_PLANNING_TTL", defaults.planning_ttl),
        enabled=env.get("AI_CACHE_ENABLED", "").strip().lower() != "false",
        cleanup_interval=_env_number(env, "AI_CACHE_CLEANUP_INTERVAL", defaults.cleanup_interval),
        single_flight=env.get("AI_CACHE_SINGLE_FLIGHT", "").strip().lower() in _TRUE_VALUES,
    )

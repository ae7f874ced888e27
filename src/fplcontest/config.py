"""Process-wide settings for the API client and its response cache."""

from enum import Enum
from pathlib import Path

from platformdirs import user_cache_dir
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheMode(str, Enum):
    """Cache modes for upstream API responses."""

    MEMORY = "memory"
    FILESYSTEM = "filesystem"
    OFF = "off"


class FplContestConfig(BaseSettings):
    """Settings read from ``FPLCONTEST_*`` environment variables or a ``.env`` file."""

    # Response cache
    cache_mode: CacheMode = Field(
        default=CacheMode.MEMORY,
        description="Cache mode: 'memory', 'filesystem', or 'off'",
        alias="FPLCONTEST_CACHE",
    )

    cache_dir: Path = Field(
        default_factory=lambda: Path(user_cache_dir("fplcontest")),
        description="Where filesystem-mode responses are written",
        alias="FPLCONTEST_CACHE_DIR",
    )

    cache_ttl_seconds: float = Field(
        default=300.0,
        description="Seconds an upstream response stays fresh in the cache",
        alias="FPLCONTEST_CACHE_TTL",
    )

    # Upstream API
    api_base_url: str = Field(
        default="https://fantasy.premierleague.com/api",
        description="Base URL of the fantasy football API",
        alias="FPLCONTEST_API_BASE_URL",
    )

    league_id: int | None = Field(
        default=None,
        description="Classic league used for standings lookups",
        alias="FPLCONTEST_LEAGUE_ID",
    )

    # HTTP
    timeout: int = Field(
        default=30,
        description="HTTP request timeout in seconds",
        alias="FPLCONTEST_TIMEOUT",
    )

    user_agent: str = Field(
        default="fplcontest/0.1.0",
        description="User agent for HTTP requests",
        alias="FPLCONTEST_USER_AGENT",
    )

    verbose: bool = Field(
        default=True,
        description="Log progress messages",
        alias="FPLCONTEST_VERBOSE",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


config = FplContestConfig()


def get_config() -> FplContestConfig:
    """Return the active settings object."""
    return config


def update_config(**kwargs) -> None:
    """Override individual settings in place, e.g. ``update_config(timeout=5)``."""
    global config
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ValueError(f"Unknown configuration option: {key}")


def reset_config() -> None:
    """Re-read settings from the environment."""
    global config
    config = FplContestConfig()

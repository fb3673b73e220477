from dotenv import load_dotenv
from dataclasses import dataclass, field, fields
from typing import Optional, List, Dict, Any
from pathlib import Path
import json
import logging
import os

from sitecrawler.constants import (
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_REQUEST_DELAY_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_MAX_ORPHAN_SWEEPS,
    DEFAULT_BACKOFF_TIMEOUT_THRESHOLD,
    DEFAULT_BACKOFF_WINDOW_SECONDS,
    DEFAULT_BACKOFF_LEVELS,
    DEFAULT_USER_AGENT,
)
from sitecrawler.infrastructure.backoff_governor import BackoffConfig

load_dotenv()  # Loads variables from .env file

logger = logging.getLogger(__name__)


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    # Page store backend: 'memory' or 'sqlite'
    STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///crawl_data.db")  # Default to SQLite

    USER_AGENT = os.getenv("USER_AGENT", DEFAULT_USER_AGENT)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    OUTPUT_DIR = os.getenv("OUTPUT_DIR", "crawls")


settings = Settings()


@dataclass
class CrawlerConfig:
    """Configuration for a single crawl. Durations are in seconds."""

    # Scheduling
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    request_delay: float = DEFAULT_REQUEST_DELAY_SECONDS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS
    max_orphan_sweeps: int = DEFAULT_MAX_ORPHAN_SWEEPS

    # Follow img/script/stylesheet references as well as links
    crawl_resources: bool = False

    # Cookies forwarded with matching requests: {"name", "value", "domain", "path"}
    cookies: List[Dict[str, str]] = field(default_factory=list)

    # Overload backoff
    enable_backoff: bool = True
    backoff_timeout_threshold: int = DEFAULT_BACKOFF_TIMEOUT_THRESHOLD
    backoff_window_duration: float = DEFAULT_BACKOFF_WINDOW_SECONDS
    backoff_levels: List[float] = field(default_factory=lambda: list(DEFAULT_BACKOFF_LEVELS))

    user_agent: str = field(default_factory=lambda: settings.USER_AGENT)

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if self.retries < 0:
            raise ValueError("retries must not be negative")
        if not self.backoff_levels:
            raise ValueError("backoff_levels must contain at least one duration")

    @classmethod
    def from_env(cls) -> "CrawlerConfig":
        """Load configuration from environment variables.

        Environment variables should be prefixed with CRAWLER_
        e.g., CRAWLER_MAX_CONCURRENT=10, CRAWLER_BACKOFF_LEVELS=10,20,40

        Returns:
            CrawlerConfig with values from environment
        """
        config = cls()
        prefix = "CRAWLER_"

        for config_field in fields(config):
            env_key = f"{prefix}{config_field.name.upper()}"
            env_value = os.getenv(env_key)

            if env_value is None:
                continue

            try:
                setattr(config, config_field.name, _coerce(config_field.name, getattr(config, config_field.name), env_value))
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_key}: {env_value!r}")

        return config

    @classmethod
    def from_file(cls, path: str) -> "CrawlerConfig":
        """Load configuration from a JSON configuration file.

        The file may hold the settings at the top level or under a
        "crawler" key.

        Args:
            path: Path to JSON configuration file

        Returns:
            CrawlerConfig with values from file
        """
        config = cls()
        file_path = Path(path)

        if not file_path.exists():
            logger.warning(f"Config file not found, using defaults: {path}")
            return config

        with open(file_path, 'r') as f:
            data = json.load(f)

        crawler_config = data.get('crawler', data)

        for config_field in fields(config):
            if config_field.name in crawler_config:
                setattr(config, config_field.name, crawler_config[config_field.name])

        config.__post_init__()
        return config

    def to_dict(self) -> dict:
        """Convert configuration to dictionary.

        Returns:
            Dictionary of all configuration values
        """
        return {
            config_field.name: getattr(self, config_field.name)
            for config_field in fields(self)
        }

    def save_to_file(self, path: str) -> None:
        """Save current configuration to a JSON file.

        Args:
            path: Path to save configuration
        """
        with open(path, 'w') as f:
            json.dump({'crawler': self.to_dict()}, f, indent=2)

    def backoff_config(self) -> BackoffConfig:
        """Build the governor configuration from the backoff settings."""
        return BackoffConfig(
            enabled=self.enable_backoff,
            timeout_threshold=self.backoff_timeout_threshold,
            window_duration=self.backoff_window_duration,
            backoff_levels=tuple(self.backoff_levels),
        )


def _coerce(name: str, current: Any, raw: str) -> Any:
    """Convert an environment string to the type of the current value."""
    if name == "cookies":
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(str(e)) from e
        if not isinstance(value, list):
            raise ValueError("cookies must be a JSON list")
        return value
    if name == "backoff_levels":
        levels = [float(part) for part in raw.split(",") if part.strip()]
        if not levels:
            raise ValueError("empty backoff ladder")
        return levels
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw

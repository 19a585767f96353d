"""
Configuration management for fetchgate using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en",
    "User-Agent": "Mozilla/5.0",
}

# --- Nested Configuration Models ---


class FetcherSettings(BaseModel):
    """Executor-wide defaults. Each field can be overridden per call through FetchConfig."""

    timeout: float = Field(default=10.0, gt=0, description="HTTP request timeout in seconds.")
    queue_limit: int = Field(default=50, ge=1, description="Maximum concurrent requests per host.")
    queue_timeout: float = Field(default=10.0, gt=0, description="Maximum seconds to wait for an admission slot.")
    timeouts_count_throw: int = Field(
        default=30, ge=1, description="Timeout count at which a host is failed fast."
    )
    max_retries: int = Field(default=2, ge=0, description="Retries for transient transport failures.")
    max_inline_wait: float = Field(
        default=10.0, ge=0, description="Longest Retry-After (seconds) that is waited out inline."
    )
    default_retry_after: float = Field(default=5.0, gt=0, description="Used when Retry-After is absent or invalid.")
    backoff_base: float = Field(default=1.0, gt=0, description="First backoff delay in seconds.")
    backoff_cap: float = Field(default=5.0, gt=0, description="Upper bound for a single backoff delay.")
    timeout_counter_ttl: float = Field(
        default=3600.0, gt=0, description="Seconds of inactivity after which a host's timeout count resets."
    )
    headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "FetcherSettings":
        if self.backoff_cap < self.backoff_base:
            raise ValueError("backoff_cap must be greater than or equal to backoff_base")
        return self


class FetchConfig(BaseModel):
    """
    Per-call request configuration.

    Fields left as None fall back to the executor's FetcherSettings. Headers are
    merged over the executor defaults rather than replacing them.
    """

    timeout: Optional[float] = Field(default=None, gt=0)
    queue_limit: Optional[int] = Field(default=None, ge=1)
    queue_timeout: Optional[float] = Field(default=None, gt=0)
    timeouts_count_throw: Optional[int] = Field(default=None, ge=1)
    max_retries: Optional[int] = Field(default=None, ge=0)
    headers: Dict[str, str] = Field(default_factory=dict)
    method: str = "GET"
    params: Optional[Dict[str, str]] = None
    data: Optional[Any] = None

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()

    def with_headers(self, headers: Dict[str, str], *, override: bool = True) -> "FetchConfig":
        """Return a copy with extra headers. With override=False existing keys win."""
        merged = {**self.headers, **headers} if override else {**headers, **self.headers}
        return self.model_copy(update={"headers": merged})

    def resolve(self, defaults: FetcherSettings) -> "ResolvedFetchConfig":
        return ResolvedFetchConfig(
            timeout=self.timeout if self.timeout is not None else defaults.timeout,
            queue_limit=self.queue_limit if self.queue_limit is not None else defaults.queue_limit,
            queue_timeout=self.queue_timeout if self.queue_timeout is not None else defaults.queue_timeout,
            timeouts_count_throw=(
                self.timeouts_count_throw
                if self.timeouts_count_throw is not None
                else defaults.timeouts_count_throw
            ),
            max_retries=self.max_retries if self.max_retries is not None else defaults.max_retries,
            headers={**defaults.headers, **self.headers},
            method=self.method,
            params=self.params,
            data=self.data,
        )


class ResolvedFetchConfig(BaseModel):
    """FetchConfig with every default filled in."""

    timeout: float
    queue_limit: int
    queue_timeout: float
    timeouts_count_throw: int
    max_retries: int
    headers: Dict[str, str]
    method: str = "GET"
    params: Optional[Dict[str, str]] = None
    data: Optional[Any] = None


class TMDBSettings(BaseModel):
    """Metadata API credentials and defaults."""

    api_key: str = Field(default="", description="TMDB v3 API key appended to every request.")
    base_url: str = Field(default="https://api.themoviedb.org/3", description="API root without trailing slash.")
    language: str = Field(default="en-US", description="Default language for detail lookups.")
    queue_limit: int = Field(default=50, ge=1, description="Admission capacity requested for API calls.")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class MonitoringSettings(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    json_logs: bool = Field(default=False, description="Render console logs as JSON.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


# --- Main Configuration Class ---


class Settings(BaseSettings):
    project_name: str = "fetchgate"
    fetcher: FetcherSettings = Field(default_factory=FetcherSettings)
    tmdb: TMDBSettings = Field(default_factory=TMDBSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    model_config = SettingsConfigDict(env_prefix="FETCHGATE_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Settings:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for path in (current_dir / "fetchgate.yaml", current_dir / "fetchgate.yml"):
        if path.exists():
            return path
    return None


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from an explicit YAML file, a discovered one, or the environment."""
    config_path = path or find_config_file()
    if config_path is None:
        log.debug("No config file found. Using environment and defaults.")
        return Settings()
    log.info("Loading configuration from: %s", config_path)
    return Settings.from_yaml(config_path)

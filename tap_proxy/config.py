from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

from tap_proxy.domain.exceptions import ConfigurationError

_PROJECT_DIR = Path(__file__).resolve().parents[1]
_ENV_FILES = (
    _PROJECT_DIR / ".env",
    ".env",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_title: str = "Tap Proxy"
    app_version: str = "0.1.0"
    app_env: str = "development"
    host: str = "0.0.0.0"
    port: int = 8787

    # Upstream API
    upstream_base_url: str = "https://api.anthropic.com"
    upstream_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("UPSTREAM_API_KEY", "ANTHROPIC_API_KEY", "upstream_api_key"),
    )

    # Interaction log storage
    log_dir: str = "logs"

    # Metrics worker
    metrics_enabled: bool = True
    metrics_poll_interval: float = 5.0
    metrics_process_existing: bool = True
    metrics_watch_for_new: bool = True
    metrics_max_concurrency: int = 4
    # "anthropic" counts through count_tokens, "estimate" stays offline
    token_counter: str = "anthropic"

    # Logging — per-category log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_level: str = "INFO"                  # Root / app-wide
    log_level_http: str = "WARNING"          # httpx / httpcore — outbound HTTP
    log_level_uvicorn: str = "INFO"          # uvicorn.access / uvicorn.error
    log_level_proxy: str = "INFO"            # capture proxy + stream reconstruction
    log_level_metrics: str = "INFO"          # registry, analyzers, worker
    log_level_watch: str = "WARNING"         # watchfiles

    model_config = {
        "env_file": _ENV_FILES,
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def validate_required(self) -> None:
        """Refuse to start without the settings the proxy cannot work without.

        Raises:
            ConfigurationError: If the upstream credential or URL is missing.
        """
        if not self.upstream_api_key.strip():
            raise ConfigurationError(
                "UPSTREAM_API_KEY",
                "Missing upstream API key. Set UPSTREAM_API_KEY or ANTHROPIC_API_KEY.",
            )
        if not self.upstream_base_url.strip():
            raise ConfigurationError("UPSTREAM_BASE_URL", "Upstream base URL must not be empty.")
        if self.token_counter not in ("anthropic", "estimate"):
            raise ConfigurationError(
                "TOKEN_COUNTER", f"Unknown token counter '{self.token_counter}'."
            )


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance — reads .env once."""
    return Settings()

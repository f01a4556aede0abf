"""
Configuration settings for the Milvue client.

This module provides a settings class with support for loading configuration
from TOML files and environment variables (``MILVUE_API_KEY``, ``MILVUE_API_URL``,
``MILVUE_API_URL_DEV``, ...). The core client never reads these globals itself:
callers turn them into an explicit :class:`MilvueConfig`.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from .exceptions import ConfigError
from .models import PollPolicy


class MilvueEnvironment(str, Enum):
    """Milvue environments, each backed by its own URL setting."""

    DEFAULT = "default"
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class MilvueConfig(BaseModel):
    """Explicit connection configuration handed to a MilvueClient."""

    model_config = ConfigDict(frozen=True)

    api_key: str
    base_url: str
    timeout: float = 60.0

    def __repr__(self) -> str:
        return f"MilvueConfig(base_url={self.base_url!r}, timeout={self.timeout!r})"


class Settings(BaseSettings):
    """Main settings class for the Milvue client.

    Values come from environment variables prefixed with ``MILVUE_`` first,
    then from ``milvue.toml`` and ``milvue.custom.toml`` in the working directory.
    """

    model_config = SettingsConfigDict(
        toml_file=["milvue.toml", "milvue.custom.toml"], env_prefix="MILVUE_", extra="ignore"
    )

    # API settings
    api_key: str | None = None
    api_url: str | None = None
    api_url_dev: str | None = None
    api_url_staging: str | None = None
    api_url_prod: str | None = None
    environment: MilvueEnvironment = MilvueEnvironment.DEFAULT
    request_timeout: float = 60.0

    # Polling settings
    poll_interval: float = 3.0
    poll_max_attempts: int = 400
    poll_max_wait: float = 1200.0
    poll_max_network_retries: int = 5
    poll_backoff_base: float = 1.0
    poll_backoff_factor: float = 2.0
    poll_backoff_max: float = 30.0

    # Logging settings
    log_level: str = "INFO"
    log_to_file: bool = False
    log_dir: str | None = None
    log_rotation: str = "20 MB"
    log_retention: str = "1 week"
    log_format: str | None = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the sources for settings.

        Priority order: init arguments, environment variables, then TOML config files
        """
        return init_settings, env_settings, TomlConfigSettingsSource(settings_cls)

    def get_url(self, environment: MilvueEnvironment | str | None = None) -> str:
        """Get the API URL configured for an environment.

        Args:
            environment: Environment to resolve, defaults to ``self.environment``

        Returns:
            The base URL without trailing slash

        Raises:
            ConfigError: If the matching setting is not set
        """
        env = MilvueEnvironment(environment) if environment else self.environment
        field = "api_url" if env == MilvueEnvironment.DEFAULT else f"api_url_{env.value}"
        url = getattr(self, field)
        if not url:
            raise ConfigError(f"Environment variable not found: MILVUE_{field.upper()}")
        return str(url).rstrip("/")

    def get_api_key(self) -> str:
        """Get the API key or fail with a ConfigError."""
        if not self.api_key:
            raise ConfigError("Environment variable not found: MILVUE_API_KEY")
        return self.api_key

    def client_config(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        environment: MilvueEnvironment | str | None = None,
    ) -> MilvueConfig:
        """Build a MilvueConfig, letting explicit values override the settings."""
        return MilvueConfig(
            api_key=api_key or self.get_api_key(),
            base_url=api_url.rstrip("/") if api_url else self.get_url(environment),
            timeout=self.request_timeout,
        )

    @property
    def poll_policy(self) -> PollPolicy:
        """Get the polling policy configured by the settings."""
        return PollPolicy(
            interval=self.poll_interval,
            max_attempts=self.poll_max_attempts,
            max_wait=self.poll_max_wait,
            max_network_retries=self.poll_max_network_retries,
            backoff_base=self.poll_backoff_base,
            backoff_factor=self.poll_backoff_factor,
            backoff_max=self.poll_backoff_max,
        )

    def get_log_dir(self) -> Path:
        """Get the log directory path.

        Returns:
            Path to the log directory. Uses log_dir if specified,
            otherwise ``~/.milvue/logs``.
        """
        if self.log_dir:
            return Path(self.log_dir)
        return Path.home() / ".milvue" / "logs"


@lru_cache
def get_settings() -> Settings:
    """Get the settings instance, with caching.

    Returns:
        Cached Settings instance
    """
    return Settings()


# Create a global settings instance for easy imports
settings = get_settings()

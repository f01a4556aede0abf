"""Tests for environment and TOML configuration."""

from pathlib import Path

import pytest

from milvue.client import MilvueClient
from milvue.exceptions import ConfigError
from milvue.settings import MilvueConfig, MilvueEnvironment, Settings

MILVUE_VARS = [
    "MILVUE_API_KEY",
    "MILVUE_API_URL",
    "MILVUE_API_URL_DEV",
    "MILVUE_API_URL_STAGING",
    "MILVUE_API_URL_PROD",
    "MILVUE_ENVIRONMENT",
    "MILVUE_POLL_INTERVAL",
]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    """Run in an empty directory with no MILVUE_ variable set."""
    for name in MILVUE_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestSettings:
    """Tests for Settings resolution."""

    def test_from_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("MILVUE_API_KEY", "secret")
        clean_env.setenv("MILVUE_API_URL", "https://api.milvue.test/")

        settings = Settings()

        assert settings.get_api_key() == "secret"
        assert settings.get_url() == "https://api.milvue.test"

    def test_missing_api_key(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(ConfigError, match="MILVUE_API_KEY"):
            Settings().get_api_key()

    def test_missing_url(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(ConfigError, match="MILVUE_API_URL"):
            Settings().get_url()

    def test_environment_urls(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("MILVUE_API_URL", "https://default.test")
        clean_env.setenv("MILVUE_API_URL_STAGING", "https://staging.test")
        clean_env.setenv("MILVUE_ENVIRONMENT", "staging")

        settings = Settings()

        assert settings.environment is MilvueEnvironment.STAGING
        assert settings.get_url() == "https://staging.test"
        assert settings.get_url("default") == "https://default.test"
        with pytest.raises(ConfigError, match="MILVUE_API_URL_PROD"):
            settings.get_url(MilvueEnvironment.PROD)

    def test_toml_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        (tmp_path / "milvue.toml").write_text(
            'api_key = "from-toml"\napi_url = "https://toml.test"\npoll_interval = 7.5\n'
        )
        clean_env.setenv("MILVUE_API_URL", "https://env.test")

        settings = Settings()

        assert settings.api_key == "from-toml"
        assert settings.get_url() == "https://env.test"
        assert settings.poll_policy.interval == 7.5

    def test_client_config_overrides(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("MILVUE_API_KEY", "secret")
        clean_env.setenv("MILVUE_API_URL", "https://env.test")

        config = Settings(request_timeout=5).client_config(api_url="https://cli.test/")

        assert config == MilvueConfig(api_key="secret", base_url="https://cli.test", timeout=5)
        assert "secret" not in repr(config)

    def test_poll_policy(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("MILVUE_POLL_INTERVAL", "0.5")

        policy = Settings(poll_max_network_retries=1).poll_policy

        assert policy.interval == 0.5
        assert policy.max_network_retries == 1

    def test_invalid_poll_policy(self, clean_env: pytest.MonkeyPatch) -> None:
        with pytest.raises(ConfigError):
            Settings(poll_max_attempts=0).poll_policy

    def test_log_dir(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        assert Settings().get_log_dir() == Path.home() / ".milvue" / "logs"
        assert Settings(log_dir=str(tmp_path)).get_log_dir() == tmp_path


@pytest.mark.asyncio
async def test_client_from_settings(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("MILVUE_API_KEY", "secret")
    clean_env.setenv("MILVUE_API_URL", "https://env.test")
    clean_env.setenv("MILVUE_POLL_INTERVAL", "2")

    async with MilvueClient.from_settings(Settings()) as client:
        assert client.base_url == "https://env.test"
        assert client.config.api_key == "secret"
        assert client.poll_policy.interval == 2

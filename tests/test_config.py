import pytest

from budget_server.config import DEFAULT_DATA_PATH, DEFAULT_PORT, AppConfig
from budget_server.errors import ConfigError

SECRET = "k" * 64


def test_from_env_defaults():
    config = AppConfig.from_env({"SESSION_SECRET": SECRET})
    assert config.port == DEFAULT_PORT
    assert config.data_path == DEFAULT_DATA_PATH
    assert config.production is False
    assert config.bind_address == f"0.0.0.0:{DEFAULT_PORT}"


def test_from_env_overrides():
    config = AppConfig.from_env({
        "SESSION_SECRET": SECRET,
        "SERVER_HOST": "127.0.0.1",
        "SERVER_PORT": "8080",
        "DATABASE_PATH": "/var/lib/budget",
        "PRODUCTION": "TRUE",
    })
    assert config.bind_address == "127.0.0.1:8080"
    assert config.data_path == "/var/lib/budget"
    assert config.production is True


def test_from_env_requires_session_secret():
    with pytest.raises(ConfigError, match="SESSION_SECRET"):
        AppConfig.from_env({})


def test_from_env_rejects_short_secret():
    with pytest.raises(ConfigError, match="at least 64"):
        AppConfig.from_env({"SESSION_SECRET": "short"})


@pytest.mark.parametrize("port", ["abc", "0", "70000"])
def test_from_env_rejects_bad_port(port):
    with pytest.raises(ConfigError, match="Invalid port"):
        AppConfig.from_env({"SESSION_SECRET": SECRET, "SERVER_PORT": port})

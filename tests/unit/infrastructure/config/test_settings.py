import os

import pytest

from portalcli.domain.exceptions import ConfigurationError
from portalcli.infrastructure.config.settings import (
    DEFAULT_CREDENTIAL_DIR,
    get_config,
    load_client_settings,
    load_configuration,
    reset_configuration,
    set_config_for_testing,
)


def test_missing_base_url_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="PORTAL_API_URL"):
        load_client_settings()


def test_defaults(monkeypatch):
    monkeypatch.setenv("PORTAL_API_URL", "https://portal.example.com/")

    loaded = load_client_settings()

    assert loaded.base_url == "https://portal.example.com"
    assert loaded.timeout_ms == 30000
    assert loaded.timeout_s == 30.0
    assert loaded.max_retries == 3
    assert loaded.base_delay_ms == 1000
    assert loaded.mock_fallback_permitted is False
    assert loaded.dev_login_fallback is False
    assert loaded.credential_dir == DEFAULT_CREDENTIAL_DIR


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PORTAL_API_URL", "http://localhost:8080")
    monkeypatch.setenv("PORTAL_MAX_RETRIES", "0")
    monkeypatch.setenv("PORTAL_BASE_DELAY_MS", "250")
    monkeypatch.setenv("PORTAL_MOCK_FALLBACK", "true")
    monkeypatch.setenv("PORTAL_CREDENTIAL_DIR", str(tmp_path))

    loaded = load_client_settings()

    assert loaded.max_retries == 0
    assert loaded.base_delay_ms == 250
    assert loaded.mock_fallback_permitted is True
    assert loaded.credential_dir == tmp_path


def test_yaml_file_supplies_nested_keys(monkeypatch, tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "api:\n"
        "  base_url: https://yaml.example.com\n"
        "  max_retries: 5\n"
        "auth:\n"
        "  dev_login_fallback: true\n"
    )
    reset_configuration()
    load_configuration(config_file=config_file)

    loaded = load_client_settings()

    assert get_config("api.max_retries") == 5
    assert loaded.base_url == "https://yaml.example.com"
    assert loaded.max_retries == 5
    assert loaded.dev_login_fallback is True


def test_environment_beats_yaml(monkeypatch, tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("api:\n  max_retries: 5\n")
    reset_configuration()
    load_configuration(config_file=config_file)
    monkeypatch.setenv("API_MAX_RETRIES", "1")

    assert get_config("api.max_retries") == 1


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("PORTAL_API_URL=https://dotenv.example.com\n")
    monkeypatch.delenv("PORTAL_API_URL", raising=False)
    reset_configuration()
    load_configuration(config_file=tmp_path / "none.yaml", env_file=env_file)
    try:
        assert load_client_settings().base_url == "https://dotenv.example.com"
    finally:
        os.environ.pop("PORTAL_API_URL", None)


@pytest.mark.parametrize("key, value", [
    ("PORTAL_MAX_RETRIES", -1),
    ("PORTAL_TIMEOUT_MS", "soon"),
    ("PORTAL_MOCK_FALLBACK", "maybe"),
])
def test_malformed_values_rejected(key, value):
    set_config_for_testing({"PORTAL_API_URL": "http://x", key: value})
    with pytest.raises(ConfigurationError):
        load_client_settings()


def test_explicit_base_url_wins():
    assert load_client_settings(base_url="http://explicit/").base_url == "http://explicit"


def test_test_config_has_highest_priority(monkeypatch):
    monkeypatch.setenv("PORTAL_API_URL", "http://env")
    set_config_for_testing({"PORTAL_API_URL": "http://test"})
    assert load_client_settings().base_url == "http://test"

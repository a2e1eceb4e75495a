"""Tests for settings loading from config.ini and MBN_ environment variables."""

import pytest

from mailbox_notifier.config_loader import ENV_PREFIX, NotifierSettings, load_settings

ENV_KEYS = [
    "CONFIG", "HOST", "PORT", "API_TOKEN", "TELEGRAM_TOKEN", "TELEGRAM_API_URL", "MAILBOX",
    "MAX_RETRIES", "POLL_SCALE_SECONDS", "FETCH_QUEUE_SIZE", "CONNECT_TIMEOUT", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(f"{ENV_PREFIX}{key}", raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_without_file_or_env():
    assert load_settings() == NotifierSettings()


def test_reads_every_section(tmp_path):
    config_file = tmp_path / "notifier.ini"
    config_file.write_text("""
[server]
host = 127.0.0.1
port = 9000
api_token = secret

[telegram]
token = 123:ABC
api_url = https://bot.example.com

[monitor]
mailbox = Archive
max_retries = 5
poll_scale_seconds = 0.5
fetch_queue_size = 10
connect_timeout = 12

[logging]
level = debug
""")

    settings = load_settings(config_file)

    assert settings.http_host == "127.0.0.1"
    assert settings.http_port == 9000
    assert settings.api_token == "secret"
    assert settings.telegram_token == "123:ABC"
    assert settings.telegram_api_url == "https://bot.example.com"
    assert settings.mailbox == "Archive"
    assert settings.max_retries == 5
    assert settings.poll_scale_seconds == 0.5
    assert settings.fetch_queue_size == 10
    assert settings.connect_timeout == 12.0
    assert settings.log_level == "DEBUG"


def test_environment_fills_missing_options(tmp_path, monkeypatch):
    config_file = tmp_path / "notifier.ini"
    config_file.write_text("[server]\nport = 9000\n")
    monkeypatch.setenv("MBN_PORT", "7000")
    monkeypatch.setenv("MBN_TELEGRAM_TOKEN", "env-token")
    monkeypatch.setenv("MBN_MAX_RETRIES", "4")

    settings = load_settings(config_file)

    assert settings.http_port == 9000
    assert settings.telegram_token == "env-token"
    assert settings.max_retries == 4


def test_config_path_from_environment(tmp_path, monkeypatch):
    config_file = tmp_path / "elsewhere.ini"
    config_file.write_text("[monitor]\nmailbox = Work\n")
    monkeypatch.setenv("MBN_CONFIG", str(config_file))

    assert load_settings().mailbox == "Work"


def test_invalid_numbers_fall_back_to_defaults(tmp_path, monkeypatch):
    config_file = tmp_path / "notifier.ini"
    config_file.write_text("[monitor]\nmax_retries = many\n")
    monkeypatch.setenv("MBN_POLL_SCALE_SECONDS", "fast")

    settings = load_settings(config_file)

    assert settings.max_retries == 3
    assert settings.poll_scale_seconds == 60.0


def test_blank_values_count_as_missing(tmp_path):
    config_file = tmp_path / "notifier.ini"
    config_file.write_text("[server]\napi_token =\n")

    assert load_settings(config_file).api_token is None

"""Tests for the appliance configuration manager."""

from datetime import timedelta

import pytest

from appliance.config import ApplianceConfiguration
from shared.exceptions import ConfigurationError


def write_config(tmp_path, text):
    path = tmp_path / "appliance.conf"
    path.write_text(text)
    return str(path)


def test_defaults(tmp_path):
    config = ApplianceConfiguration(config_file=write_config(tmp_path, ""), environ={})

    assert config.get_market_uri() == "http://localhost:3000"
    assert config.get_repo_path() == "~/.lotusworker"
    assert config.get_timeout() == 30.0
    assert config.get_poll_interval() == timedelta(minutes=10)
    assert config.get_refresh_threshold() == timedelta(minutes=30)
    assert config.get_log_level() == "INFO"
    assert config.get_log_file() is None


def test_file_values(tmp_path):
    path = write_config(tmp_path, """
[market]
uri = https://market.example.com/
timeout = 12.5

[refresh]
poll_interval = 60
refresh_threshold = 300
""")

    config = ApplianceConfiguration(config_file=path, environ={})

    assert config.get_market_uri() == "https://market.example.com"
    assert config.get_timeout() == 12.5
    assert config.get_poll_interval() == timedelta(seconds=60)
    assert config.get_refresh_threshold() == timedelta(seconds=300)


def test_environment_overrides_file(tmp_path):
    path = write_config(tmp_path, "[market]\nuri = http://from-file:3000\n")
    environ = {
        "MARKET_URI": "http://from-env:3000",
        "WORKER_PATH": "/deprecated/path",
        "LOTUS_WORKER_PATH": "/srv/worker",
        "MARKET_POLL_INTERVAL": "120",
    }

    config = ApplianceConfiguration(config_file=path, environ=environ)

    assert config.get_market_uri() == "http://from-env:3000"
    assert config.get_repo_path() == "/srv/worker"
    assert config.get_poll_interval() == timedelta(seconds=120)


def test_deprecated_worker_path(tmp_path):
    config = ApplianceConfiguration(config_file=write_config(tmp_path, ""), environ={"WORKER_PATH": "/old"})
    assert config.get_repo_path() == "/old"


def test_overrides_win(tmp_path):
    config = ApplianceConfiguration(
        config_file=write_config(tmp_path, ""),
        environ={"MARKET_URI": "http://from-env:3000"}
    )

    config.set_override("market.uri", "http://from-cli:3000")
    config.set_override("worker.repo_path", None)

    assert config.get_market_uri() == "http://from-cli:3000"
    assert config.get_repo_path() == "~/.lotusworker"
    assert config.get_all_config()["market"]["uri"] == "http://from-cli:3000"


def test_missing_explicit_file_is_an_error(tmp_path):
    with pytest.raises(ConfigurationError):
        ApplianceConfiguration(config_file=str(tmp_path / "absent.conf"), environ={})


def test_malformed_file_is_an_error(tmp_path):
    path = write_config(tmp_path, "uri = no section header\n")

    with pytest.raises(ConfigurationError):
        ApplianceConfiguration(config_file=path, environ={})


@pytest.mark.parametrize("value", ["0", "-5", "soon"])
def test_invalid_intervals(tmp_path, value):
    path = write_config(tmp_path, f"[refresh]\npoll_interval = {value}\n")
    config = ApplianceConfiguration(config_file=path, environ={})

    with pytest.raises(ConfigurationError) as exc_info:
        config.get_poll_interval()

    assert exc_info.value.context["config_key"] == "refresh.poll_interval"

"""Tests for environment-driven settings"""
from pathlib import Path

import pytest

from pocket_ipam.core.config import DB_FILENAME, Settings, default_data_dir
from pocket_ipam.core.errors import ValidationError


def test_defaults():
    settings = Settings.from_env({})
    assert settings.data_dir == default_data_dir()
    assert settings.db_path == default_data_dir() / DB_FILENAME
    assert settings.ping_timeout == 1
    assert settings.ping_workers == 64
    assert settings.max_sweep_hosts == 4096
    assert settings.log_level == "WARNING"
    assert settings.iface is None


def test_environment_overrides(tmp_path):
    settings = Settings.from_env(
        {
            "POCKET_IPAM_DATADIR": str(tmp_path),
            "POCKET_IPAM_PING_TIMEOUT": "3",
            "POCKET_IPAM_PING_WORKERS": "8",
            "POCKET_IPAM_MAX_SWEEP": "256",
            "POCKET_IPAM_LOG_LEVEL": "debug",
            "POCKET_IPAM_IFACE": "eth1",
        }
    )
    assert settings.db_path == Path(tmp_path) / DB_FILENAME
    assert settings.log_file.parent == Path(tmp_path)
    assert (settings.ping_timeout, settings.ping_workers, settings.max_sweep_hosts) == (3, 8, 256)
    assert settings.log_level == "DEBUG"
    assert settings.iface == "eth1"


def test_blank_values_fall_back_to_defaults():
    settings = Settings.from_env({"POCKET_IPAM_DATADIR": "  ", "POCKET_IPAM_PING_WORKERS": ""})
    assert settings.data_dir == default_data_dir()
    assert settings.ping_workers == 64


@pytest.mark.parametrize("value", ["abc", "0", "-5", "1.5"])
def test_bad_numbers_are_rejected(value):
    with pytest.raises(ValidationError):
        Settings.from_env({"POCKET_IPAM_PING_TIMEOUT": value})


def test_settings_are_immutable(tmp_path):
    settings = Settings(data_dir=tmp_path)
    with pytest.raises(AttributeError):
        settings.data_dir = Path("/elsewhere")

"""Tests for the scapy cache location"""
import pytest

from pocket_ipam.core import scapy_runtime
from pocket_ipam.core.errors import StorageError


@pytest.fixture
def home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CACHE_HOME", "")
    monkeypatch.setattr(scapy_runtime.sys, "platform", "linux")
    return home


def test_user_cache_dir_is_used(home):
    target = scapy_runtime.prepare_scapy_cache()
    assert target == home / ".cache" / "pocket-ipam"
    assert target.is_dir()
    assert scapy_runtime.os.environ["XDG_CACHE_HOME"] == str(target)


def test_macos_cache_dir(home, monkeypatch):
    monkeypatch.setattr(scapy_runtime.sys, "platform", "darwin")
    assert scapy_runtime.prepare_scapy_cache() == home / "Library" / "Caches" / "pocket-ipam"


def test_existing_xdg_cache_home_wins(home, tmp_path, monkeypatch):
    chosen = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CACHE_HOME", str(chosen))
    assert scapy_runtime.prepare_scapy_cache() == chosen
    assert not (home / ".cache").exists()


def test_unusable_candidate_is_skipped(home, tmp_path, monkeypatch):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    monkeypatch.setenv("XDG_CACHE_HOME", str(blocker / "cache"))
    assert scapy_runtime.prepare_scapy_cache() == home / ".cache" / "pocket-ipam"


def test_no_usable_candidate(tmp_path, monkeypatch):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    monkeypatch.setattr(scapy_runtime, "cache_candidates", lambda: [blocker / "a", blocker / "b"])
    with pytest.raises(StorageError):
        scapy_runtime.prepare_scapy_cache()

"""
Tests for the supporting modules: config paths, keychain lookup,
directory snapshots and version caching.
"""

import subprocess

import pytest

from chromium_session_cli import config
from chromium_session_cli.errors import NotFound
from chromium_session_cli.keychain import get_safe_storage_password
from chromium_session_cli.snapshot import snapshot_directory
from chromium_session_cli.version import VERSION_ENV, VersionCache


# =============================================================================
# Config
# =============================================================================

class TestFindSlackPaths:

    @pytest.fixture(autouse=True)
    def isolated_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv(config.DATA_DIR_ENV, raising=False)
        monkeypatch.setattr(config, "SLACK_SUPPORT_DIR_ELECTRON", tmp_path / "electron")
        monkeypatch.setattr(config, "SLACK_SUPPORT_DIR_APPSTORE", tmp_path / "appstore")

    def test_appstore_fallback(self, tmp_path):
        (tmp_path / "appstore" / "Local Storage" / "leveldb").mkdir(parents=True)
        paths = config.find_slack_paths()
        assert paths.leveldb_dir == tmp_path / "appstore" / "Local Storage" / "leveldb"
        assert paths.cookies_db == tmp_path / "appstore" / "Cookies"

    def test_electron_preferred(self, tmp_path):
        (tmp_path / "electron" / "Local Storage" / "leveldb").mkdir(parents=True)
        (tmp_path / "appstore" / "Local Storage" / "leveldb").mkdir(parents=True)
        assert config.find_slack_paths().cookies_db == tmp_path / "electron" / "Cookies"

    def test_env_override(self, tmp_path, monkeypatch):
        (tmp_path / "electron" / "Local Storage" / "leveldb").mkdir(parents=True)
        (tmp_path / "custom" / "Local Storage" / "leveldb").mkdir(parents=True)
        monkeypatch.setenv(config.DATA_DIR_ENV, str(tmp_path / "custom"))
        assert config.find_slack_paths().cookies_db == tmp_path / "custom" / "Cookies"

    def test_not_found_lists_candidates(self, tmp_path):
        with pytest.raises(NotFound) as exc_info:
            config.find_slack_paths()
        assert "electron" in str(exc_info.value)
        assert "appstore" in str(exc_info.value)


class TestSnapshotDir:

    def test_default_under_home(self, monkeypatch):
        monkeypatch.delenv(config.CACHE_DIR_ENV, raising=False)
        assert config.snapshot_dir().parts[-3:] == (config.APP_NAME, "cache", "leveldb-snapshots")

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv(config.CACHE_DIR_ENV, str(tmp_path))
        assert config.snapshot_dir() == tmp_path


# =============================================================================
# Keychain
# =============================================================================

class TestSafeStoragePassword:

    def test_first_available_service(self):
        calls = []

        def runner(args):
            calls.append(args[-1])
            if args[-1] == "Slack Safe Storage":
                raise subprocess.CalledProcessError(44, args)
            return "secret\n"

        assert get_safe_storage_password(runner=runner) == "secret"
        assert calls == ["Slack Safe Storage", "Chrome Safe Storage"]

    def test_empty_output_skipped(self):
        outputs = {"A": "\n", "B": "pw"}
        assert get_safe_storage_password(["A", "B"], runner=lambda args: outputs[args[-1]]) == "pw"

    def test_missing_tool(self):
        def runner(args):
            raise FileNotFoundError("security")

        with pytest.raises(NotFound) as exc_info:
            get_safe_storage_password(["Slack Safe Storage"], runner=runner)
        assert "Slack Safe Storage" in str(exc_info.value)


# =============================================================================
# Snapshots
# =============================================================================

class TestSnapshotDirectory:

    def test_copy_without_lock_removed_afterwards(self, tmp_path):
        src = tmp_path / "leveldb"
        src.mkdir()
        (src / "000003.log").write_bytes(b"data")
        (src / "LOCK").write_bytes(b"")

        with snapshot_directory(src, base=tmp_path / "snaps") as snap:
            assert (snap / "000003.log").read_bytes() == b"data"
            assert not (snap / "LOCK").exists()

        assert not snap.exists()
        assert (src / "LOCK").exists()

    def test_removed_on_error(self, tmp_path):
        src = tmp_path / "leveldb"
        src.mkdir()

        with pytest.raises(RuntimeError):
            with snapshot_directory(src, base=tmp_path / "snaps") as snap:
                raise RuntimeError("boom")

        assert not snap.exists()


# =============================================================================
# Version
# =============================================================================

class TestVersionCache:

    def test_env_version(self, monkeypatch):
        monkeypatch.setenv(VERSION_ENV, " 1.2.3 ")
        assert VersionCache().get() == "1.2.3"

    def test_cached_until_reset(self, monkeypatch):
        cache = VersionCache()
        monkeypatch.setenv(VERSION_ENV, "1.0.0")
        assert cache.get() == "1.0.0"
        monkeypatch.setenv(VERSION_ENV, "2.0.0")
        assert cache.get() == "1.0.0"
        cache.reset()
        assert cache.get() == "2.0.0"

    def test_unknown_distribution_falls_back(self, monkeypatch):
        monkeypatch.delenv(VERSION_ENV, raising=False)
        assert VersionCache("no-such-distribution-xyz").get() == "0.0.0"

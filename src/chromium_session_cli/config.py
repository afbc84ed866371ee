"""Filesystem locations and keychain service names."""

import os
import typing
from pathlib import Path

from chromium_session_cli.errors import NotFound

APP_NAME = "chromium-session-cli"

DATA_DIR_ENV = "SLACK_DATA_DIR"
CACHE_DIR_ENV = "CHROMIUM_SESSION_CACHE_DIR"

# Electron (direct download) build
SLACK_SUPPORT_DIR_ELECTRON = Path.home() / "Library" / "Application Support" / "Slack"
# Mac App Store build (sandboxed container)
SLACK_SUPPORT_DIR_APPSTORE = (
    Path.home()
    / "Library"
    / "Containers"
    / "com.tinyspeck.slackmacgap"
    / "Data"
    / "Library"
    / "Application Support"
    / "Slack"
)

SAFE_STORAGE_SERVICES = ("Slack Safe Storage", "Chrome Safe Storage", "Chromium Safe Storage")


class SlackPaths(typing.NamedTuple):
    leveldb_dir: Path
    cookies_db: Path


def slack_support_dirs() -> list[Path]:
    """Candidate Slack data roots, the SLACK_DATA_DIR override first."""
    dirs = [SLACK_SUPPORT_DIR_ELECTRON, SLACK_SUPPORT_DIR_APPSTORE]
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        dirs.insert(0, Path(override).expanduser())
    return dirs


def find_slack_paths() -> SlackPaths:
    """Locate the first Slack data root that has a Local Storage database."""
    candidates = slack_support_dirs()
    for root in candidates:
        leveldb_dir = root / "Local Storage" / "leveldb"
        if leveldb_dir.is_dir():
            return SlackPaths(leveldb_dir, root / "Cookies")

    checked = "\n  - ".join(str(root / "Local Storage" / "leveldb") for root in candidates)
    raise NotFound(f"Slack Desktop data not found. Checked:\n  - {checked}")


def snapshot_dir() -> Path:
    override = os.environ.get(CACHE_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / APP_NAME / "cache" / "leveldb-snapshots"

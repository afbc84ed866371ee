"""Slack Desktop credential extraction.

Team tokens (``xoxc-``) live in Local Storage under a ``localConfig_v2`` or
``localConfig_v3`` key. The ``d`` cookie (``xoxd-``) that must accompany them
lives in the Cookies SQLite database, usually encrypted with Safe Storage.
"""

import json
import logging
import os
import re
import shutil
import sqlite3
import tempfile
import typing
from contextlib import closing
from pathlib import Path

from chromium_session_cli import leveldb
from chromium_session_cli.config import find_slack_paths
from chromium_session_cli.cookies import decrypt_cookie_value
from chromium_session_cli.errors import FormatInvalid, NotFound
from chromium_session_cli.keychain import get_safe_storage_password
from chromium_session_cli.snapshot import snapshot_directory

logger = logging.getLogger(__name__)

_LOCAL_CONFIG_PREFIX = b"localConfig_v"
_LOCAL_CONFIG_KEYS = (b"localConfig_v2", b"localConfig_v3")
_TEAM_TOKEN_PREFIX = "xoxc-"
_COOKIE_TOKEN_RE = re.compile(r"xoxd-[A-Za-z0-9%/+_=.-]+")

_COOKIE_QUERY = (
    "select host_key, name, value, encrypted_value from cookies "
    "where name = 'd' and host_key like '%slack.com' "
    "order by length(encrypted_value) desc"
)


class DesktopTeam(typing.NamedTuple):
    url: str
    token: str
    name: str | None = None


class DesktopExtracted(typing.NamedTuple):
    cookie_d: str
    teams: list[DesktopTeam]
    leveldb_path: Path
    cookies_path: Path


# ---------------------------------------------------------------------------
# Local Storage
# ---------------------------------------------------------------------------

def parse_local_config(raw: bytes) -> typing.Any:
    """Decode a Local Storage localConfig value into JSON.

    Chromium prefixes Local Storage values with a one-byte encoding marker and
    stores them as UTF-16-LE or Latin-1 depending on content. UTF-8 is tried
    before Latin-1 so ASCII and UTF-8 payloads keep their characters; Latin-1
    decodes any byte string, so a non-JSON payload fails on parsing, not decoding.
    """
    if not raw:
        raise FormatInvalid("localConfig is empty")

    data = raw[1:] if raw[0] in (0x00, 0x01, 0x02) else raw

    if data.count(0) > len(data) / 4:
        encodings = ("utf-16-le", "utf-8", "latin-1")
    else:
        encodings = ("utf-8", "latin-1", "utf-16-le")

    last_err: Exception | None = None
    for encoding in encodings:
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError as exc:
            last_err = exc
            continue

        try:
            return json.loads(text)
        except ValueError as exc:
            last_err = exc

        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            try:
                return json.loads(text[start: end + 1])
            except ValueError as exc:
                last_err = exc

    raise FormatInvalid(f"localConfig not parseable: {last_err}")


def _to_team(value: typing.Any) -> DesktopTeam | None:
    if not isinstance(value, dict):
        return None
    url = value.get("url")
    token = value.get("token")
    if not isinstance(url, str) or not isinstance(token, str) or not url or not token:
        return None
    name = value.get("name")
    return DesktopTeam(url=url, token=token, name=name if isinstance(name, str) else None)


def teams_from_entries(entries: typing.Iterable[leveldb.Entry]) -> list[DesktopTeam]:
    """Pick the first localConfig entry and return its teams holding xoxc- tokens."""
    config_value = None
    for entry in entries:
        if any(k in entry.key for k in _LOCAL_CONFIG_KEYS) and entry.value:
            config_value = entry.value
            break

    if config_value is None:
        raise NotFound("Slack LevelDB did not contain localConfig_v2/v3")

    cfg = parse_local_config(config_value)
    teams_obj = cfg.get("teams") if isinstance(cfg, dict) else None
    if not isinstance(teams_obj, dict):
        teams_obj = {}

    teams = [team for team in map(_to_team, teams_obj.values()) if team is not None]
    teams = [team for team in teams if team.token.startswith(_TEAM_TOKEN_PREFIX)]
    if not teams:
        raise NotFound("No xoxc tokens found in Slack localConfig")
    return teams


def extract_teams(leveldb_dir: str | os.PathLike, snapshot_base: str | os.PathLike | None = None) -> list[DesktopTeam]:
    if not Path(leveldb_dir).is_dir():
        raise NotFound(f"Slack LevelDB not found: {leveldb_dir}")

    try:
        with snapshot_directory(leveldb_dir, base=snapshot_base) as snap:
            entries = leveldb.find_by_substring(snap, _LOCAL_CONFIG_PREFIX)
    except OSError as exc:
        raise NotFound(f"Cannot snapshot Slack LevelDB {leveldb_dir}: {exc}") from exc

    logger.debug("Found %d localConfig candidate entries", len(entries))
    return teams_from_entries(entries)


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------

def _query_cookie_d(cookies_path: Path) -> tuple | None:
    # Query a private copy; the live database is locked while Slack runs
    with tempfile.TemporaryDirectory(prefix="chromium-session-cookies-") as tmp:
        copy = Path(tmp) / cookies_path.name
        try:
            shutil.copy2(cookies_path, copy)
        except OSError as exc:
            raise NotFound(f"Cannot copy Slack Cookies DB {cookies_path}: {exc}") from exc

        try:
            with closing(sqlite3.connect(f"{copy.as_uri()}?mode=ro", uri=True)) as conn:
                return conn.execute(_COOKIE_QUERY).fetchone()
        except sqlite3.Error as exc:
            raise FormatInvalid(f"Cannot read Slack Cookies DB {cookies_path}: {exc}") from exc


def extract_cookie_d(
    cookies_db: str | os.PathLike,
    passphrase_supplier: typing.Callable[[], str] = get_safe_storage_password,
) -> str:
    """Return the xoxd- token from Slack's ``d`` cookie."""
    cookies_path = Path(cookies_db)
    if not cookies_path.is_file():
        raise NotFound(f"Slack Cookies DB not found: {cookies_path}")

    row = _query_cookie_d(cookies_path)

    if row is None:
        raise NotFound("No Slack 'd' cookie found")

    _host_key, _name, value, encrypted_value = row
    if value and value.startswith("xoxd-"):
        return value

    encrypted = bytes(encrypted_value or b"")
    if not encrypted:
        raise NotFound("Slack 'd' cookie had no encrypted_value")

    decrypted = decrypt_cookie_value(encrypted, passphrase_supplier())
    match = _COOKIE_TOKEN_RE.search(decrypted)
    if not match:
        raise FormatInvalid("Could not locate xoxd-* in decrypted Slack cookie")
    return match.group(0)


def extract_from_slack_desktop(
    passphrase_supplier: typing.Callable[[], str] = get_safe_storage_password,
) -> DesktopExtracted:
    paths = find_slack_paths()
    teams = extract_teams(paths.leveldb_dir)
    cookie_d = extract_cookie_d(paths.cookies_db, passphrase_supplier)
    return DesktopExtracted(
        cookie_d=cookie_d,
        teams=teams,
        leveldb_path=paths.leveldb_dir,
        cookies_path=paths.cookies_db,
    )

"""Command-line interface for Chromium session data access.

Reads raw LevelDB Local Storage, decrypts Safe Storage cookie values and
extracts Slack Desktop credentials.
"""

import json
import logging
import sys
from pathlib import Path

import click
from chromium_session_cli import leveldb
from chromium_session_cli.cookies import decrypt_cookie_value
from chromium_session_cli.desktop import extract_from_slack_desktop
from chromium_session_cli.errors import DecryptionError
from chromium_session_cli.keychain import get_safe_storage_password
from chromium_session_cli.version import get_package_version


def _fail(err: Exception) -> None:
    click.echo(f"❌ Error: {err}", err=True)
    sys.exit(1)


def _show(data: bytes) -> str:
    return data.decode("utf-8", errors="backslashreplace")


@click.group()
@click.version_option(version=get_package_version())
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """CLI tool for reading Chromium session data.

    Dump Local Storage LevelDB entries, decrypt cookie values, or pull
    Slack Desktop tokens.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.group("leveldb")
def leveldb_group():
    """Read LevelDB directories."""
    pass


@leveldb_group.command("scan")
@click.argument("path", type=click.Path(path_type=Path))
@click.option("-c", "--contains", help="Only keys containing this text")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def leveldb_scan(path: Path, contains: str | None, as_json: bool):
    """List every key-value pair found in a LevelDB directory.

    Examples:

      chromium-session-cli leveldb scan "Local Storage/leveldb"

      chromium-session-cli leveldb scan "Local Storage/leveldb" -c localConfig_v
    """
    if contains:
        entries = leveldb.find_by_substring(path, contains)
    else:
        entries = leveldb.scan_directory(path)

    if as_json:
        data = [{"key": _show(e.key), "value": _show(e.value)} for e in entries]
        click.echo(json.dumps(data, indent=2))
    elif not entries:
        click.echo("No entries found.")
    else:
        click.echo(f"\n🗄  Found {len(entries)} entries:\n")
        for entry in entries:
            click.echo(f"  • {_show(entry.key)}")
            click.echo(f"    {click.style(_show(entry.value), dim=True)}")


@cli.group()
def cookie():
    """Work with encrypted cookie values."""
    pass


@cookie.command("decrypt")
@click.argument("encrypted_hex")
@click.option("-p", "--passphrase", help="Safe Storage passphrase (default: read from Keychain)")
def cookie_decrypt(encrypted_hex: str, passphrase: str | None):
    """Decrypt a hex-encoded encrypted_value from a Cookies database."""
    try:
        encrypted = bytes.fromhex(encrypted_hex)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ENCRYPTED_HEX")

    try:
        if passphrase is None:
            passphrase = get_safe_storage_password()
        click.echo(decrypt_cookie_value(encrypted, passphrase))
    except DecryptionError as e:
        _fail(e)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def desktop(as_json: bool):
    """Extract tokens and the d cookie from Slack Desktop."""
    try:
        extracted = extract_from_slack_desktop()
    except DecryptionError as e:
        _fail(e)

    if as_json:
        data = {
            "cookie_d": extracted.cookie_d,
            "teams": [{"url": t.url, "name": t.name, "token": t.token} for t in extracted.teams],
            "source": {
                "leveldb_path": str(extracted.leveldb_path),
                "cookies_path": str(extracted.cookies_path),
            },
        }
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(f"\n🔑 Found {len(extracted.teams)} teams:\n")
        for team in extracted.teams:
            click.echo(f"  • {team.name or team.url}")
            click.echo(f"    {click.style(team.url, dim=True)}")
        click.echo(f"\nCookie d: {click.style(extracted.cookie_d, dim=True)}")


if __name__ == "__main__":
    cli()

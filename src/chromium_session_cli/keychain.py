"""Safe Storage passphrase lookup via the macOS ``security`` tool."""

import logging
import subprocess
import typing

from chromium_session_cli.config import SAFE_STORAGE_SERVICES
from chromium_session_cli.errors import NotFound

logger = logging.getLogger(__name__)

Runner = typing.Callable[[list[str]], str]


def _run_security(args: list[str]) -> str:
    result = subprocess.run(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        text=True,
        check=True,
    )
    return result.stdout


def get_safe_storage_password(
    services: typing.Sequence[str] = SAFE_STORAGE_SERVICES,
    runner: Runner = _run_security,
) -> str:
    """Return the first non-empty Safe Storage password among ``services``."""
    for service in services:
        try:
            out = runner(["security", "find-generic-password", "-w", "-s", service]).strip()
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.debug("Keychain lookup for %r failed: %s", service, exc)
            continue
        if out:
            logger.debug("Using Safe Storage password from %r", service)
            return out

    tried = ", ".join(f'"{s}"' for s in services)
    raise NotFound(f"Could not read Safe Storage password from Keychain (tried {tried}).")

"""Point-in-time copies of a live LevelDB directory.

The owning application keeps writing while we read, so the reader always
works on a private copy with the LOCK file removed.
"""

import contextlib
import logging
import os
import shutil
import subprocess
import sys
import time
import typing
from pathlib import Path

from chromium_session_cli.config import snapshot_dir

logger = logging.getLogger(__name__)


def _copy_tree(src: Path, dest: Path) -> None:
    # Copy-on-write clone on APFS; plain copy anywhere else
    if sys.platform != "darwin":
        shutil.copytree(src, dest)
        return
    try:
        subprocess.run(
            ["cp", "-cR", str(src), str(dest)],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
        return
    except (OSError, subprocess.CalledProcessError):
        logger.debug("cp -cR unavailable, falling back to copytree")
    if dest.exists():
        shutil.rmtree(dest, ignore_errors=True)
    shutil.copytree(src, dest)


@contextlib.contextmanager
def snapshot_directory(
    src: str | os.PathLike, base: str | os.PathLike | None = None
) -> typing.Iterator[Path]:
    """Copy ``src`` under ``base`` and yield the copy, deleting it afterwards."""
    base_path = Path(base) if base is not None else snapshot_dir()
    base_path.mkdir(parents=True, exist_ok=True)
    dest = base_path / str(time.time_ns())

    _copy_tree(Path(src), dest)
    (dest / "LOCK").unlink(missing_ok=True)
    logger.debug("Snapshot of %s at %s", src, dest)

    try:
        yield dest
    finally:
        shutil.rmtree(dest, ignore_errors=True)

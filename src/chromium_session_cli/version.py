"""Package version lookup."""

import importlib.metadata
import os

from chromium_session_cli.config import APP_NAME

VERSION_ENV = "CHROMIUM_SESSION_CLI_VERSION"
_FALLBACK_VERSION = "0.0.0"


class VersionCache:
    """Resolves the package version once and remembers it until reset()."""

    def __init__(self, distribution: str = APP_NAME):
        self.distribution = distribution
        self._version: str | None = None

    def get(self) -> str:
        if self._version is None:
            self._version = self._resolve()
        return self._version

    def reset(self) -> None:
        self._version = None

    def _resolve(self) -> str:
        env_version = os.environ.get(VERSION_ENV, "").strip()
        if env_version:
            return env_version
        try:
            return importlib.metadata.version(self.distribution) or _FALLBACK_VERSION
        except importlib.metadata.PackageNotFoundError:
            return _FALLBACK_VERSION


default_cache = VersionCache()


def get_package_version() -> str:
    return default_cache.get()
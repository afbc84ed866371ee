"""Exception types.

Structural problems in LevelDB files raise FormatError internally and are
swallowed at block/file granularity by the readers. Everything on the
credential path (keychain lookup, cookie decryption, token lookup) raises a
DecryptionError subclass so the caller can tell which step failed.
"""

import enum


class ChromiumSessionError(Exception):
    pass


# ---------------------------------------------------------------------------
# Soft (structural) failures
# ---------------------------------------------------------------------------

class FormatErrorReason(enum.Enum):
    TRUNCATED = "truncated"
    VARINT_TOO_LONG = "varint too long"
    CORRUPT = "corrupt"


class FormatError(ChromiumSessionError):
    """A LevelDB structure could not be decoded."""

    def __init__(self, reason: FormatErrorReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


class UnsupportedCompression(FormatError):
    def __init__(self, compression: int):
        self.compression = compression
        super().__init__(FormatErrorReason.CORRUPT, f"unsupported compression type {compression}")


# ---------------------------------------------------------------------------
# Hard (credential) failures
# ---------------------------------------------------------------------------

class DecryptionError(ChromiumSessionError):
    pass


class NotFound(DecryptionError):
    """A passphrase, file, database row or token could not be located."""


class DecryptionFailed(DecryptionError):
    """The cipher rejected the input (usually a wrong passphrase)."""


class FormatInvalid(DecryptionError):
    """Data was found and decrypted but does not have the expected shape."""

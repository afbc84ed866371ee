"""Decryption of Chromium cookie values protected by Safe Storage.

On macOS the browser (or an Electron app) keeps a random passphrase in the
keychain and derives an AES-128 key from it. Encrypted values carry a
``v10``/``v11`` version prefix; older ones have none.
"""

import hashlib
import logging
import re
import urllib.parse

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from chromium_session_cli.errors import DecryptionFailed

logger = logging.getLogger(__name__)

_VERSION_PREFIXES = (b"v10", b"v11")
_SALT = b"saltysalt"
_ITERATIONS = 1003
_KEY_LENGTH = 16
_IV = b" " * 16

_TOKEN_MARKER = b"xoxd-"
_MALFORMED_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def derive_key(passphrase: str | bytes) -> bytes:
    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    return hashlib.pbkdf2_hmac("sha1", passphrase, _SALT, _ITERATIONS, _KEY_LENGTH)


def _percent_decode(raw: str) -> str:
    """Percent-decode strictly, returning ``raw`` untouched on bad input."""
    if _MALFORMED_ESCAPE_RE.search(raw):
        return raw
    try:
        return urllib.parse.unquote(raw, errors="strict")
    except UnicodeDecodeError:
        return raw


def decrypt_cookie_value(encrypted: bytes, passphrase: str | bytes) -> str:
    """Decrypt a cookie's ``encrypted_value`` and pull out the xoxd- token.

    If the plaintext has no ``xoxd-`` marker the whole plaintext is returned
    and the caller decides whether it is usable. Raises DecryptionFailed when
    the cipher rejects the data, which is what a wrong passphrase looks like.
    """
    if not encrypted:
        return ""

    data = encrypted[3:] if encrypted[:3] in _VERSION_PREFIXES else encrypted

    cipher = AES.new(derive_key(passphrase), AES.MODE_CBC, iv=_IV)
    try:
        plain = unpad(cipher.decrypt(data), AES.block_size)
    except ValueError as exc:
        raise DecryptionFailed(f"AES-CBC cookie decryption failed: {exc}") from exc

    idx = plain.find(_TOKEN_MARKER)
    if idx == -1:
        logger.debug("Decrypted cookie has no %r marker", _TOKEN_MARKER)
        return plain.decode("utf-8", errors="replace")

    end = idx
    while end < len(plain) and 0x21 <= plain[end] <= 0x7E:
        end += 1
    return _percent_decode(plain[idx:end].decode("ascii"))

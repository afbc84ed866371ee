"""Read-only LevelDB reader for Chromium Local Storage.

Recovers key-value pairs from LevelDB databases (.ldb/.sst table files and
.log files) including Snappy-compressed blocks. Only supports exhaustive
linear extraction — no sorted/merged views, no manifest handling, no restart
point seeking. Records that were later overwritten or deleted are still
returned.

Parsing is lenient: a damaged block, log record or file is skipped and
whatever decoded cleanly is kept, since the source directory may belong to a
running process.

Snappy decoding follows ccl_simplesnappy by CCL Forensics, MIT licensed.
Original author: Alex Caithness.
"""

import enum
import io
import logging
import os
import pathlib
import struct
import typing

from chromium_session_cli.errors import FormatError, FormatErrorReason, UnsupportedCompression

logger = logging.getLogger(__name__)

# Block trailers and log record headers both carry a masked CRC32C. The
# readers locate it but only consult it when this is switched on; a mismatch
# then drops the block or record like any other corruption.
VERIFY_CHECKSUMS = False


class Entry(typing.NamedTuple):
    """A raw key-value pair. Table keys keep their 8-byte internal suffix."""
    key: bytes
    value: bytes


_CRC32C_POLY = 0x82F63B78
_CRC32C_MASK_DELTA = 0xA282EAD8


def _make_crc32c_table() -> list[int]:
    table = []
    for n in range(256):
        crc = n
        for _ in range(8):
            crc = (crc >> 1) ^ _CRC32C_POLY if crc & 1 else crc >> 1
        table.append(crc)
    return table


_CRC32C_TABLE = _make_crc32c_table()


def crc32c(data: bytes) -> int:
    """CRC-32C (Castagnoli) of ``data``."""
    crc = 0xFFFFFFFF
    for byte in data:
        crc = _CRC32C_TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ 0xFFFFFFFF


def masked_crc32c(data: bytes) -> int:
    """The rotated, offset form LevelDB stores on disk."""
    crc = crc32c(data)
    return ((((crc >> 15) | (crc << 17)) & 0xFFFFFFFF) + _CRC32C_MASK_DELTA) & 0xFFFFFFFF


def _verify_checksum(data: bytes, stored: int) -> None:
    if not VERIFY_CHECKSUMS:
        return
    actual = masked_crc32c(data)
    if actual != stored:
        raise FormatError(
            FormatErrorReason.CORRUPT,
            f"checksum mismatch: stored {stored:#010x}, computed {actual:#010x}",
        )


# ---------------------------------------------------------------------------
# Varints
# ---------------------------------------------------------------------------

def read_varint(buf: bytes, offset: int) -> tuple[int, int]:
    """Read an unsigned 32-bit varint. Returns (value, bytes consumed)."""
    result = 0
    shift = 0
    pos = offset
    while pos < len(buf):
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if (byte & 0x80) == 0:
            return result & 0xFFFFFFFF, pos - offset
        shift += 7
        if shift >= 35:
            raise FormatError(FormatErrorReason.VARINT_TOO_LONG, f"at offset {offset}")
    raise FormatError(FormatErrorReason.TRUNCATED, f"varint at offset {offset}")


def read_varint64(buf: bytes, offset: int) -> tuple[int, int]:
    """Read a varint of up to 10 bytes, keeping only the low 32 bits.

    Block handles are varint64 on disk. Local Storage segments are far below
    4 GiB, so offsets and sizes past 32 bits are not supported.
    """
    result = 0
    pos = offset
    for i in range(10):
        if pos >= len(buf):
            raise FormatError(FormatErrorReason.TRUNCATED, f"varint64 at offset {offset}")
        byte = buf[pos]
        pos += 1
        result |= (byte & 0x7F) << (i * 7)
        if (byte & 0x80) == 0:
            return result & 0xFFFFFFFF, pos - offset
    raise FormatError(FormatErrorReason.VARINT_TOO_LONG, f"varint64 at offset {offset}")


# ---------------------------------------------------------------------------
# Snappy decompression (from ccl_simplesnappy, MIT license)
# ---------------------------------------------------------------------------

_SNAPPY_LITERAL = 0
_SNAPPY_COPY_1BYTE = 1
_SNAPPY_COPY_2BYTE = 2
_SNAPPY_COPY_4BYTE = 3


def _read_exact(stream: typing.BinaryIO, length: int) -> bytes:
    chunk = stream.read(length)
    if len(chunk) < length:
        raise FormatError(FormatErrorReason.TRUNCATED, "snappy stream")
    return chunk


def _snappy_decompress(data: bytes) -> bytes:
    """Decompress a raw Snappy block, checking the declared length."""
    uncompressed_length, consumed = read_varint(data, 0)
    stream = io.BytesIO(data)
    stream.seek(consumed)
    out = bytearray()

    while True:
        raw = stream.read(1)
        if not raw:
            break
        tag_byte = raw[0]
        tag = tag_byte & 0x03

        if tag == _SNAPPY_LITERAL:
            size_marker = tag_byte >> 2
            if size_marker < 60:
                length = 1 + size_marker
            else:
                # 60..63: length - 1 follows in 1..4 little-endian bytes
                length = 1 + int.from_bytes(_read_exact(stream, size_marker - 59), "little")
            out += _read_exact(stream, length)

        else:
            if tag == _SNAPPY_COPY_1BYTE:
                length = ((tag_byte & 0x1C) >> 2) + 4
                offset = ((tag_byte & 0xE0) << 3) | _read_exact(stream, 1)[0]
            elif tag == _SNAPPY_COPY_2BYTE:
                length = 1 + (tag_byte >> 2)
                offset = struct.unpack("<H", _read_exact(stream, 2))[0]
            else:
                length = 1 + (tag_byte >> 2)
                offset = struct.unpack("<I", _read_exact(stream, 4))[0]

            if offset == 0 or offset > len(out):
                raise FormatError(FormatErrorReason.CORRUPT, f"snappy backreference offset {offset}")

            src_pos = len(out) - offset
            buf = out[src_pos: src_pos + length]
            if offset <= length:
                buf = (buf * length)[:length]
            out += buf

        if len(out) > uncompressed_length:
            break

    if uncompressed_length != len(out):
        raise FormatError(
            FormatErrorReason.CORRUPT,
            f"snappy produced {len(out)} bytes, expected {uncompressed_length}",
        )
    return bytes(out)


class CompressionType(enum.IntEnum):
    NONE = 0
    SNAPPY = 1


def decompress_block(data: bytes, compression: int) -> bytes:
    if compression == CompressionType.NONE:
        return data
    if compression == CompressionType.SNAPPY:
        return _snappy_decompress(data)
    raise UnsupportedCompression(compression)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

def parse_block(block: bytes) -> list[Entry]:
    """Decode every entry of a data or index block, in order.

    Blocks use prefix compression: each entry stores how many bytes of the
    key it shares with the previous entry, then the non-shared suffix.
    Decoding stops at the first malformed entry; entries before it are kept.
    """
    entries: list[Entry] = []
    if len(block) < 4:
        return entries

    restart_count = struct.unpack_from("<I", block, len(block) - 4)[0]
    restarts_start = len(block) - 4 - 4 * restart_count
    if restarts_start < 0:
        return entries

    offset = 0
    key = b""
    while offset < restarts_start:
        try:
            shared, n = read_varint(block, offset)
            offset += n
            non_shared, n = read_varint(block, offset)
            offset += n
            value_len, n = read_varint(block, offset)
            offset += n
        except FormatError as exc:
            logger.debug("Block entry header unreadable at offset %d: %s", offset, exc)
            break

        if shared > len(key):
            logger.debug("Shared prefix %d longer than previous key (%d)", shared, len(key))
            break
        if offset + non_shared + value_len > restarts_start:
            logger.debug("Block entry at offset %d overruns the restart array", offset)
            break

        key = key[:shared] + bytes(block[offset: offset + non_shared])
        offset += non_shared
        value = bytes(block[offset: offset + value_len])
        offset += value_len
        entries.append(Entry(key, value))

    return entries


# ---------------------------------------------------------------------------
# .ldb / .sst table files
# ---------------------------------------------------------------------------

_BLOCK_TRAILER_SIZE = 5
_TABLE_FOOTER_SIZE = 48
_TABLE_MAGIC = 0xDB4775248B80FB57


class BlockHandle(typing.NamedTuple):
    offset: int
    size: int


def _read_block_handle(buf: bytes, offset: int) -> tuple[BlockHandle, int]:
    """Read a (offset, size) BlockHandle. Returns the handle and bytes consumed."""
    block_offset, n1 = read_varint64(buf, offset)
    block_size, n2 = read_varint64(buf, offset + n1)
    return BlockHandle(block_offset, block_size), n1 + n2


def _read_block(data: bytes, handle: BlockHandle, limit: int) -> bytes:
    """Slice a block and its trailer out of a table file and decompress it."""
    end = handle.offset + handle.size + _BLOCK_TRAILER_SIZE
    if end > limit:
        raise FormatError(
            FormatErrorReason.TRUNCATED,
            f"block at {handle.offset}+{handle.size} ends past byte {limit}",
        )
    trailer_start = handle.offset + handle.size
    compression = data[trailer_start]
    crc = struct.unpack_from("<I", data, trailer_start + 1)[0]
    payload = data[handle.offset: trailer_start]
    _verify_checksum(payload + bytes([compression]), crc)
    return decompress_block(payload, compression)


def parse_table_file(path: str | os.PathLike) -> list[Entry]:
    """Return every entry of a .ldb or .sst table file, in index order.

    Never raises: an unreadable file, bad footer or bad index yields an empty
    list, and a bad data block is skipped on its own.
    """
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        logger.debug("Cannot read table %s: %s", path, exc)
        return []

    if len(data) < _TABLE_FOOTER_SIZE:
        return []

    footer = data[-_TABLE_FOOTER_SIZE:]
    magic = struct.unpack("<Q", footer[-8:])[0]
    if magic != _TABLE_MAGIC:
        logger.debug("Invalid magic in %s", path)
        return []

    try:
        # The metaindex handle is decoded only to find where the index handle starts
        _meta_handle, consumed = _read_block_handle(footer, 0)
        index_handle, _ = _read_block_handle(footer, consumed)
        index_data = _read_block(data, index_handle, len(data) - _TABLE_FOOTER_SIZE)
    except FormatError as exc:
        logger.debug("Unreadable footer or index block in %s: %s", path, exc)
        return []

    entries: list[Entry] = []
    for index_entry in parse_block(index_data):
        try:
            block_handle, _ = _read_block_handle(index_entry.value, 0)
            block_data = _read_block(data, block_handle, len(data))
        except FormatError as exc:
            logger.debug("Skipping data block in %s: %s", path, exc)
            continue
        entries.extend(parse_block(block_data))

    return entries


# ---------------------------------------------------------------------------
# .log files
# ---------------------------------------------------------------------------

_LOG_BLOCK_SIZE = 32768
_LOG_HEADER_SIZE = 7
_BATCH_HEADER_SIZE = 12


class LogRecordType(enum.IntEnum):
    FULL = 1
    FIRST = 2
    MIDDLE = 3
    LAST = 4


class BatchTag(enum.IntEnum):
    DELETE = 0
    PUT = 1


def _read_length_prefixed(buf: bytes, offset: int) -> tuple[bytes, int]:
    length, n = read_varint(buf, offset)
    start = offset + n
    if start + length > len(buf):
        raise FormatError(FormatErrorReason.TRUNCATED, f"{length} bytes at offset {start}")
    return bytes(buf[start: start + length]), start + length


def decode_write_batch(batch: bytes, out: list[Entry]) -> None:
    """Append every put in a write batch to ``out``.

    The batch header's record count is not used as a bound: records are read
    until the payload runs out, an unknown tag appears or a record fails to
    decode. Deletes are dropped and do not hide earlier puts.
    """
    if len(batch) < _BATCH_HEADER_SIZE:
        return
    _seq, _count = struct.unpack_from("<QI", batch, 0)

    offset = _BATCH_HEADER_SIZE
    while offset < len(batch):
        tag = batch[offset]
        offset += 1
        try:
            if tag == BatchTag.PUT:
                key, offset = _read_length_prefixed(batch, offset)
                value, offset = _read_length_prefixed(batch, offset)
                out.append(Entry(key, value))
            elif tag == BatchTag.DELETE:
                _key, offset = _read_length_prefixed(batch, offset)
            else:
                logger.debug("Unknown write batch tag %d at offset %d", tag, offset - 1)
                break
        except FormatError as exc:
            logger.debug("Write batch record unreadable: %s", exc)
            break


def parse_log_file(path: str | os.PathLike) -> list[Entry]:
    """Return every put recorded in a .log file, in file order."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        logger.debug("Cannot read log %s: %s", path, exc)
        return []

    entries: list[Entry] = []
    fragments: list[bytes] | None = None
    offset = 0

    while offset < len(data):
        remaining = _LOG_BLOCK_SIZE - offset % _LOG_BLOCK_SIZE

        # Headers never straddle a block boundary; the tail is padding
        if remaining < _LOG_HEADER_SIZE:
            offset += remaining
            fragments = None
            continue

        if offset + _LOG_HEADER_SIZE > len(data):
            break

        crc, length, record_type = struct.unpack_from("<IHB", data, offset)
        if length == 0 or offset + _LOG_HEADER_SIZE + length > len(data):
            logger.debug("Corrupt log record header in %s at offset %d", path, offset)
            offset += remaining
            fragments = None
            continue

        payload = data[offset + _LOG_HEADER_SIZE: offset + _LOG_HEADER_SIZE + length]
        offset += _LOG_HEADER_SIZE + length
        try:
            _verify_checksum(bytes([record_type]) + payload, crc)
        except FormatError as exc:
            logger.debug("Dropping log record in %s: %s", path, exc)
            fragments = None
            continue

        if record_type == LogRecordType.FULL:
            fragments = None
            decode_write_batch(payload, entries)
        elif record_type == LogRecordType.FIRST:
            fragments = [payload]
        elif record_type == LogRecordType.MIDDLE:
            if fragments is not None:
                fragments.append(payload)
        elif record_type == LogRecordType.LAST:
            if fragments is not None:
                fragments.append(payload)
                decode_write_batch(b"".join(fragments), entries)
            fragments = None
        else:
            logger.debug("Unknown log record type %d in %s", record_type, path)

    return entries


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_TABLE_SUFFIXES = (".ldb", ".sst")
_LOG_SUFFIX = ".log"


def scan_directory(db_dir: str | os.PathLike) -> list[Entry]:
    """Return all entries from a LevelDB database directory.

    Table files are read first, then log files, each group in directory
    listing order. Nothing is merged or deduplicated. A missing directory
    gives an empty list.
    """
    db_path = pathlib.Path(db_dir)
    try:
        files = list(db_path.iterdir())
    except OSError as exc:
        logger.debug("Cannot list %s: %s", db_dir, exc)
        return []

    entries: list[Entry] = []
    for f in files:
        if f.name.endswith(_TABLE_SUFFIXES):
            entries.extend(parse_table_file(f))
    for f in files:
        if f.name.endswith(_LOG_SUFFIX):
            entries.extend(parse_log_file(f))

    logger.debug("Read %d entries from %s", len(entries), db_dir)
    return entries


def find_by_substring(db_dir: str | os.PathLike, pattern: bytes | str) -> list[Entry]:
    """Return the entries whose raw key contains ``pattern`` as a byte run."""
    if isinstance(pattern, str):
        pattern = pattern.encode("utf-8")
    return [entry for entry in scan_directory(db_dir) if pattern in entry.key]

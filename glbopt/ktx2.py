"""KTX2 key/value metadata.

The encoder writes its own ``KTXwriter`` entry; this module merges extra
entries into the key/value block and shifts every section that follows it.
"""

from __future__ import annotations

import struct
from typing import Dict, Mapping, Union

from .errors import MalformedInput

KTX2_IDENTIFIER = b"\xabKTX 20\xbb\r\n\x1a\n"

_HEADER = struct.Struct("<9I")  # vkFormat .. supercompressionScheme
_INDEX = struct.Struct("<4I2Q")  # dfd offset/length, kvd offset/length, sgd offset/length
_LEVEL = struct.Struct("<3Q")  # byteOffset, byteLength, uncompressedByteLength

HEADER_OFFSET = len(KTX2_IDENTIFIER)
INDEX_OFFSET = HEADER_OFFSET + _HEADER.size
LEVELS_OFFSET = INDEX_OFFSET + _INDEX.size

# Sections after the key/value block move by a multiple of this so their
# alignment (8 for supercompression data, up to 16 for mip levels) holds.
SHIFT_ALIGNMENT = 16


def _level_count(data: bytes) -> int:
    level_count = _HEADER.unpack_from(data, HEADER_OFFSET)[7]
    return max(1, level_count)


def read_metadata(data: bytes) -> Dict[str, bytes]:
    """Return the key/value entries of a KTX2 file."""
    if data[:len(KTX2_IDENTIFIER)] != KTX2_IDENTIFIER or len(data) < LEVELS_OFFSET:
        raise MalformedInput("Not a KTX2 file")
    _, _, kvd_offset, kvd_length, _, _ = _INDEX.unpack_from(data, INDEX_OFFSET)
    entries: Dict[str, bytes] = {}
    pos = kvd_offset
    end = kvd_offset + kvd_length
    if end > len(data):
        raise MalformedInput("KTX2 key/value data runs past the end of the file")
    while pos + 4 <= end:
        (entry_length,) = struct.unpack_from("<I", data, pos)
        pos += 4
        entry = data[pos:pos + entry_length]
        key, sep, value = entry.partition(b"\x00")
        if not sep:
            raise MalformedInput("KTX2 key is not NUL terminated")
        entries[key.decode("utf-8")] = value
        pos += entry_length + (-entry_length % 4)
    return entries


def _encode_value(value: Union[str, bytes]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8") + b"\x00"
    return value


def _build_kvd(entries: Mapping[str, bytes]) -> bytes:
    out = bytearray()
    for key in sorted(entries, key=lambda k: k.encode("utf-8")):
        body = key.encode("utf-8") + b"\x00" + entries[key]
        out += struct.pack("<I", len(body))
        out += body
        out += b"\x00" * (-len(body) % 4)
    return bytes(out)


def set_metadata(data: bytes, values: Mapping[str, Union[str, bytes]]) -> bytes:
    """Return a copy of *data* with *values* merged into its key/value block."""
    entries = read_metadata(data)
    for key, value in values.items():
        entries[key] = _encode_value(value)
    kvd = _build_kvd(entries)

    dfd_offset, dfd_length, kvd_offset, kvd_length, sgd_offset, sgd_length = _INDEX.unpack_from(data, INDEX_OFFSET)
    start = kvd_offset if kvd_length else dfd_offset + dfd_length
    old_end = start + kvd_length
    grow = len(kvd) - kvd_length
    filler = -grow % SHIFT_ALIGNMENT
    shift = grow + filler

    out = bytearray(data[:start])
    out += kvd
    out += b"\x00" * filler
    out += data[old_end:]

    if sgd_length and sgd_offset >= old_end:
        sgd_offset += shift
    _INDEX.pack_into(out, INDEX_OFFSET, dfd_offset, dfd_length, start, len(kvd), sgd_offset, sgd_length)

    for level in range(_level_count(data)):
        pos = LEVELS_OFFSET + level * _LEVEL.size
        byte_offset, byte_length, uncompressed = _LEVEL.unpack_from(out, pos)
        if byte_offset >= old_end:
            _LEVEL.pack_into(out, pos, byte_offset + shift, byte_length, uncompressed)
    return bytes(out)

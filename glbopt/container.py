"""GLB chunk framing: split a container into document + blob and back."""

from __future__ import annotations

import json
import struct
from typing import BinaryIO, Tuple, Union

import pygltflib

from .binary import padding_for
from .errors import MalformedInput

GLB_MAGIC = b"glTF"
GLB_VERSION = 2
CHUNK_JSON = b"JSON"
CHUNK_BIN = b"BIN\x00"

_HEADER = struct.Struct("<4sII")
_CHUNK = struct.Struct("<I4s")


def _read_all(source: Union[bytes, bytearray, memoryview, BinaryIO]) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    source.seek(0)
    return source.read()


def read_container(source: Union[bytes, bytearray, memoryview, BinaryIO]) -> Tuple[pygltflib.GLTF2, bytes]:
    """Return ``(document, bin_chunk)`` for a GLB, or raise :class:`MalformedInput`."""
    buf = _read_all(source)
    if len(buf) < _HEADER.size:
        raise MalformedInput("Invalid GLB: file too small")

    magic, version, length = _HEADER.unpack_from(buf, 0)
    if magic != GLB_MAGIC:
        raise MalformedInput("Invalid GLB: bad magic")
    if version != GLB_VERSION:
        raise MalformedInput(f"Unsupported GLB version: {version} (expected {GLB_VERSION})")
    if length > len(buf):
        raise MalformedInput(f"Invalid GLB: header declares {length} bytes, file has {len(buf)}")

    json_chunk = None
    bin_chunk = None
    offset = _HEADER.size
    while offset + _CHUNK.size <= length:
        chunk_len, chunk_type = _CHUNK.unpack_from(buf, offset)
        offset += _CHUNK.size
        if offset + chunk_len > length:
            raise MalformedInput("Invalid GLB: truncated chunk data")
        chunk_data = buf[offset:offset + chunk_len]
        offset += chunk_len
        if chunk_type == CHUNK_JSON and json_chunk is None:
            json_chunk = chunk_data
        elif chunk_type == CHUNK_BIN and bin_chunk is None:
            bin_chunk = chunk_data

    if json_chunk is None:
        raise MalformedInput("Invalid GLB: missing JSON chunk")
    if bin_chunk is None:
        raise MalformedInput("Invalid GLB: missing BIN chunk")

    try:
        text = json_chunk.decode("utf-8")
        if not isinstance(json.loads(text), dict):
            raise MalformedInput("Invalid GLB: JSON root is not an object")
        gltf = pygltflib.GLTF2.from_json(text, infer_missing=True)
    except MalformedInput:
        raise
    except (UnicodeDecodeError, ValueError, TypeError, KeyError) as exc:
        raise MalformedInput(f"Invalid GLB JSON chunk: {exc}") from exc

    return gltf, bin_chunk


def pack_container(gltf: pygltflib.GLTF2, blob: bytes) -> bytes:
    """Serialise *gltf* and *blob* as a GLB; *blob* must already be 4-byte aligned."""
    if padding_for(len(blob)):
        raise ValueError("binary chunk must be 4-byte aligned")
    json_bytes = gltf.to_json(separators=(",", ":")).encode("utf-8")
    json_bytes += b" " * padding_for(len(json_bytes))

    total_length = _HEADER.size + _CHUNK.size + len(json_bytes) + _CHUNK.size + len(blob)
    out = bytearray()
    out += _HEADER.pack(GLB_MAGIC, GLB_VERSION, total_length)
    out += _CHUNK.pack(len(json_bytes), CHUNK_JSON)
    out += json_bytes
    out += _CHUNK.pack(len(blob), CHUNK_BIN)
    out += blob
    return bytes(out)

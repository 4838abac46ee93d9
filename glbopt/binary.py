"""Little-endian record access over raw blob bytes.

Accessor data is a run of fixed-width records, one every ``stride`` bytes,
starting at ``offset``. Records are viewed through numpy without copying so
the same arithmetic serves both reading (bounds) and in-place translation.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy

COMPONENT_DTYPES = {
    5120: numpy.dtype("<i1"),
    5121: numpy.dtype("<u1"),
    5122: numpy.dtype("<i2"),
    5123: numpy.dtype("<u2"),
    5125: numpy.dtype("<u4"),
    5126: numpy.dtype("<f4"),
}

FLOAT = 5126

TYPE_COMPONENTS = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}

Buffer = Union[bytes, bytearray, memoryview]


def record_size(component_type: int, accessor_type: str) -> int:
    return COMPONENT_DTYPES[component_type].itemsize * TYPE_COMPONENTS[accessor_type]


def records_fit(data_len: int, offset: int, count: int, stride: int, size: int) -> bool:
    """Return ``True`` when *count* records of *size* bytes lie inside the data."""
    if count <= 0:
        return True
    return offset >= 0 and offset + (count - 1) * stride + size <= data_len


def record_view(
    data: Buffer,
    offset: int,
    count: int,
    stride: int,
    components: int,
    dtype: Union[str, numpy.dtype] = "<f4",
) -> numpy.ndarray:
    """Return a ``(count, components)`` strided view into *data*.

    The view is writable when *data* is a ``bytearray``. Raises ``ValueError``
    if the records do not fit.
    """
    dtype = numpy.dtype(dtype)
    if not records_fit(len(data), offset, count, stride, dtype.itemsize * components):
        raise ValueError(
            f"{count} records of {components}x{dtype.itemsize} bytes at offset {offset} "
            f"(stride {stride}) do not fit in {len(data)} bytes"
        )
    if count <= 0:
        return numpy.zeros((0, components), dtype=dtype)
    return numpy.ndarray(
        shape=(count, components),
        dtype=dtype,
        buffer=data,
        offset=offset,
        strides=(stride, dtype.itemsize),
    )


def read_vec3(data: Buffer, offset: int, count: int, stride: int = 12) -> numpy.ndarray:
    """Copy ``count`` float32 triples out of *data*."""
    return record_view(data, offset, count, stride or 12, 3).copy()


def translate_vec3(data: bytearray, offset: int, count: int, stride: int, delta: Sequence[float]) -> None:
    """Add *delta* to every float32 triple in place."""
    view = record_view(data, offset, count, stride or 12, 3)
    view += numpy.asarray(delta, dtype=numpy.float32)


def translate_bounds(values: Sequence[float], delta: Sequence[float]) -> list:
    """Translate an accessor min/max triple the way the vertex data was (float32)."""
    shifted = numpy.asarray(values[:3], dtype=numpy.float32) + numpy.asarray(delta, dtype=numpy.float32)
    return [float(v) for v in shifted] + [float(v) for v in values[3:]]


def padding_for(length: int, alignment: int = 4) -> int:
    return (-length) % alignment


def pad_to_4bytes(data: bytearray, fill: bytes = b"\x00") -> None:
    data.extend(fill * padding_for(len(data)))

"""Scene bounds and the center-bottom pivot offset."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy
import pygltflib

from .binary import FLOAT, read_vec3
from .errors import MissingData
from .spans import accessor_view

log = logging.getLogger(__name__)

Vec3 = Tuple[float, float, float]


@dataclass(frozen=True)
class Bounds:
    min_xyz: Vec3
    max_xyz: Vec3

    @property
    def center(self) -> Vec3:
        return (
            (self.min_xyz[0] + self.max_xyz[0]) / 2,
            (self.min_xyz[1] + self.max_xyz[1]) / 2,
            (self.min_xyz[2] + self.max_xyz[2]) / 2,
        )


def position_data(gltf: pygltflib.GLTF2, blob: bytes, accessor_index: int) -> numpy.ndarray:
    """Decode a POSITION accessor into an ``(N, 3)`` float32 array."""
    accessor, view, data = accessor_view(gltf, blob, accessor_index)
    if accessor.type != "VEC3" or accessor.componentType != FLOAT:
        raise MissingData(f"accessor {accessor_index} is not VEC3/FLOAT")
    try:
        return read_vec3(data, accessor.byteOffset or 0, accessor.count or 0, view.byteStride or 12)
    except ValueError as exc:
        raise MissingData(f"accessor {accessor_index}: {exc}") from exc


def scene_bounds(gltf: pygltflib.GLTF2, blob: bytes) -> Optional[Bounds]:
    """Fold every mesh primitive's POSITION data into one min/max pair.

    Returns ``None`` when no primitive exposes readable positions.
    """
    lo = numpy.full(3, numpy.inf, dtype=numpy.float64)
    hi = numpy.full(3, -numpy.inf, dtype=numpy.float64)
    found = False

    for mesh_index, mesh in enumerate(gltf.meshes or []):
        for primitive in mesh.primitives or []:
            attributes = primitive.attributes
            position = getattr(attributes, "POSITION", None) if attributes is not None else None
            if position is None:
                continue
            try:
                positions = position_data(gltf, blob, position)
            except MissingData as exc:
                log.debug("Skipping positions of mesh %d: %s", mesh_index, exc)
                continue
            found = True
            if len(positions) == 0:
                continue
            lo = numpy.minimum(lo, positions.min(axis=0))
            hi = numpy.maximum(hi, positions.max(axis=0))

    if not found or numpy.any(lo > hi):
        return None
    return Bounds(
        (float(lo[0]), float(lo[1]), float(lo[2])),
        (float(hi[0]), float(hi[1]), float(hi[2])),
    )


def center_bottom_offset(bounds: Bounds) -> Vec3:
    """Translation that puts the horizontal center and lowest point at the origin."""
    center_x, _, center_z = bounds.center
    return (-center_x, -bounds.min_xyz[1], -center_z)

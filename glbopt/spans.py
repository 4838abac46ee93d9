"""Locate the byte ranges that source entities point at."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, TypeVar

import pygltflib

from .errors import MissingData

T = TypeVar("T")


def _get(items: Optional[Sequence[T]], index: Optional[int], kind: str) -> T:
    if not isinstance(index, int) or index < 0 or not items or index >= len(items):
        raise MissingData(f"{kind} {index} does not exist")
    return items[index]


def view_span(gltf: pygltflib.GLTF2, blob: bytes, view_index: Optional[int]) -> bytes:
    """Return ``blob[offset:offset + length]`` for a buffer view."""
    view = _get(gltf.bufferViews, view_index, "bufferView")
    offset = view.byteOffset or 0
    length = view.byteLength or 0
    if offset < 0 or length < 0 or offset + length > len(blob):
        raise MissingData(
            f"bufferView {view_index} range [{offset}, {offset + length}) is outside the "
            f"{len(blob)} byte blob"
        )
    return blob[offset:offset + length]


def accessor_view(
    gltf: pygltflib.GLTF2, blob: bytes, accessor_index: int
) -> Tuple[pygltflib.Accessor, pygltflib.BufferView, bytes]:
    """Resolve an accessor to ``(accessor, view, view bytes)``."""
    accessor = _get(gltf.accessors, accessor_index, "accessor")
    if accessor.bufferView is None:
        raise MissingData(f"accessor {accessor_index} has no bufferView")
    view = _get(gltf.bufferViews, accessor.bufferView, "bufferView")
    return accessor, view, view_span(gltf, blob, accessor.bufferView)


def texture_image(gltf: pygltflib.GLTF2, texture_index: int) -> Tuple[pygltflib.Texture, pygltflib.Image]:
    texture = _get(gltf.textures, texture_index, "texture")
    image = _get(gltf.images, texture.source, "image")
    return texture, image


def texture_image_span(gltf: pygltflib.GLTF2, blob: bytes, texture_index: int) -> bytes:
    """Return the embedded image bytes behind *texture_index*."""
    try:
        _, image = texture_image(gltf, texture_index)
        if image.bufferView is None:
            raise MissingData("image is not embedded in the binary chunk")
        data = view_span(gltf, blob, image.bufferView)
    except MissingData as exc:
        raise MissingData(f"Failed to get image data (texture index: {texture_index}): {exc}") from exc
    if not data:
        raise MissingData(f"Failed to get image data (texture index: {texture_index}): empty image")
    return data

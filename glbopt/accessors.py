"""Copy accessors from the source blob into the new one.

POSITION data can be translated on the way through; everything else is
copied byte for byte. Each relocated accessor gets its own buffer view.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Optional, Sequence

import pygltflib

from .binary import FLOAT, translate_bounds, translate_vec3
from .builder import DocumentBuilder, attribute_items
from .errors import MissingData
from .spans import accessor_view, view_span

log = logging.getLogger(__name__)

POSITION = "POSITION"


def _is_float_vec3(accessor: pygltflib.Accessor) -> bool:
    return accessor.type == "VEC3" and accessor.componentType == FLOAT


def _relocate_sparse(
    builder: DocumentBuilder, accessor: pygltflib.Accessor, offset: Optional[Sequence[float]]
) -> Any:
    source = builder.source
    sparse = copy.deepcopy(accessor.sparse)

    indices_span = view_span(source, builder.source_blob, sparse.indices.bufferView)
    values = bytearray(view_span(source, builder.source_blob, sparse.values.bufferView))
    if offset is not None:
        try:
            translate_vec3(values, sparse.values.byteOffset or 0, sparse.count or 0, 12, offset)
        except ValueError as exc:
            raise MissingData(f"sparse values: {exc}") from exc
    sparse.indices.bufferView = builder.append_view(indices_span, source.bufferViews[sparse.indices.bufferView])
    sparse.values.bufferView = builder.append_view(bytes(values), source.bufferViews[sparse.values.bufferView])
    return sparse


def relocate_accessor(builder: DocumentBuilder, index: int, offset: Optional[Sequence[float]] = None) -> int:
    """Copy source accessor *index* (and its view bytes) into the new document.

    When *offset* is given and the accessor holds float VEC3 records, every
    record and the accessor's min/max are translated by it. Returns the new
    accessor index; raises :class:`MissingData` when the data is unavailable.
    """
    key = (index, tuple(offset) if offset is not None else None)
    known = builder.index_map.get("accessors", key)
    if known is not None:
        return known

    accessor, view, span = accessor_view(builder.source, builder.source_blob, index)
    new_accessor = copy.deepcopy(accessor)
    data = bytearray(span)

    if offset is not None and not _is_float_vec3(accessor):
        log.debug("Accessor %d is %s/%s, copying without translation", index, accessor.type, accessor.componentType)
        offset = None

    if offset is not None:
        try:
            translate_vec3(data, accessor.byteOffset or 0, accessor.count or 0, view.byteStride or 12, offset)
        except ValueError as exc:
            raise MissingData(f"accessor {index}: {exc}") from exc
        if accessor.min:
            new_accessor.min = translate_bounds(accessor.min, offset)
        if accessor.max:
            new_accessor.max = translate_bounds(accessor.max, offset)

    if accessor.sparse is not None:
        new_accessor.sparse = _relocate_sparse(builder, accessor, offset)
    new_accessor.bufferView = builder.append_view(bytes(data), view)

    new_index = builder.push("accessors", new_accessor)
    return builder.index_map.record("accessors", key, new_index)


def relocate_optional(builder: DocumentBuilder, index: Optional[int], what: str) -> Optional[int]:
    """Relocate *index* if set; missing data drops the reference."""
    if index is None:
        return None
    try:
        return relocate_accessor(builder, index)
    except MissingData as exc:
        log.warning("Dropping %s: %s", what, exc)
        return None


def _assign(attributes: Any, semantic: str, value: Optional[int]) -> None:
    if isinstance(attributes, dict):
        if value is None:
            attributes.pop(semantic, None)
        else:
            attributes[semantic] = value
    else:
        setattr(attributes, semantic, value)


def relocate_attributes(
    builder: DocumentBuilder,
    attributes: Any,
    position_offset: Optional[Sequence[float]] = None,
    label: str = "primitive",
) -> Any:
    """Return a copy of *attributes* pointing at relocated accessors.

    Only the POSITION semantic receives *position_offset*. Attributes whose
    data is missing are removed, the others are kept.
    """
    new_attributes = copy.deepcopy(attributes)
    for semantic, index in attribute_items(attributes):
        offset = position_offset if semantic == POSITION else None
        try:
            new_index: Optional[int] = relocate_accessor(builder, index, offset)
        except MissingData as exc:
            log.warning("Dropping %s attribute %s: %s", label, semantic, exc)
            new_index = None
        _assign(new_attributes, semantic, new_index)
    return new_attributes

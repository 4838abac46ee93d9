"""Incremental construction of the output document and blob.

Every entity of the new document goes through :meth:`DocumentBuilder.push`,
which checks that each index the entity carries already resolves in the new
document. Old-to-new index correspondences are kept in an :class:`IndexMap`
so shared source entities are rebuilt once.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from typing import Any, Dict, Hashable, Iterator, List, Optional, Tuple

import pygltflib

from .binary import pad_to_4bytes
from .errors import MalformedInput

log = logging.getLogger(__name__)


class IndexMap:
    """Old key -> new index, one table per entity kind."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[Hashable, int]] = defaultdict(dict)

    def get(self, kind: str, key: Hashable) -> Optional[int]:
        return self._tables[kind].get(key)

    def record(self, kind: str, key: Hashable, index: int) -> int:
        self._tables[kind][key] = index
        return index

    def count(self, kind: str) -> int:
        return len(self._tables[kind])


def texture_infos(material: pygltflib.Material) -> Iterator[Tuple[str, Any]]:
    """Yield ``(slot, info)`` for every texture slot a material fills."""
    pbr = material.pbrMetallicRoughness
    if pbr is not None:
        yield "baseColorTexture", pbr.baseColorTexture
        yield "metallicRoughnessTexture", pbr.metallicRoughnessTexture
    yield "normalTexture", material.normalTexture
    yield "occlusionTexture", material.occlusionTexture
    yield "emissiveTexture", material.emissiveTexture


def is_texture_info(value: Any) -> bool:
    """True for a texture-info dict, the form texture slots take inside extensions."""
    if not isinstance(value, dict):
        return False
    index = value.get("index")
    return isinstance(index, int) and not isinstance(index, bool)


def extension_texture_infos(value: Any) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Yield ``(slot, info)`` for every texture-info dict nested in extension data."""
    if isinstance(value, dict):
        for slot, item in value.items():
            if is_texture_info(item):
                yield slot, item
            else:
                yield from extension_texture_infos(item)
    elif isinstance(value, list):
        for item in value:
            yield from extension_texture_infos(item)


def attribute_items(attributes: Any) -> List[Tuple[str, int]]:
    """Return the ``(semantic, accessor)`` pairs of a primitive or morph target."""
    if attributes is None:
        return []
    items = attributes.items() if isinstance(attributes, dict) else vars(attributes).items()
    return [(k, v) for k, v in items if isinstance(v, int) and not isinstance(v, bool)]


def _references(kind: str, entity: Any) -> Iterator[Tuple[str, Optional[int]]]:
    if kind == "accessors":
        yield "bufferViews", entity.bufferView
        sparse = entity.sparse
        if sparse is not None:
            yield "bufferViews", sparse.indices.bufferView
            yield "bufferViews", sparse.values.bufferView
    elif kind == "images":
        yield "bufferViews", entity.bufferView
    elif kind == "textures":
        yield "images", entity.source
        yield "samplers", entity.sampler
    elif kind == "materials":
        for _, info in texture_infos(entity):
            if info is not None:
                yield "textures", info.index
        for _, info in extension_texture_infos(entity.extensions):
            yield "textures", info["index"]
    elif kind == "meshes":
        for primitive in entity.primitives or []:
            yield "accessors", primitive.indices
            yield "materials", primitive.material
            for _, accessor in attribute_items(primitive.attributes):
                yield "accessors", accessor
            for target in primitive.targets or []:
                for _, accessor in attribute_items(target):
                    yield "accessors", accessor
    elif kind == "skins":
        yield "accessors", entity.inverseBindMatrices
        yield "nodes", entity.skeleton
        for joint in entity.joints or []:
            yield "nodes", joint
    elif kind == "animations":
        for sampler in entity.samplers or []:
            yield "accessors", sampler.input
            yield "accessors", sampler.output
        for channel in entity.channels or []:
            if channel.target is not None:
                yield "nodes", channel.target.node
    elif kind == "nodes":
        yield "meshes", entity.mesh
        yield "skins", entity.skin
        yield "cameras", entity.camera
        for child in entity.children or []:
            yield "nodes", child
    elif kind == "scenes":
        for node in entity.nodes or []:
            yield "nodes", node


class DocumentBuilder:
    """Owns the new document and blob while the source is walked once."""

    def __init__(self, source: pygltflib.GLTF2, source_blob: bytes):
        self.source = source
        self.source_blob = source_blob
        self.blob = bytearray()
        self.index_map = IndexMap()
        self.gltf = pygltflib.GLTF2(
            asset=copy.deepcopy(source.asset),
            scene=source.scene,
            scenes=copy.deepcopy(source.scenes or []),
            nodes=copy.deepcopy(source.nodes or []),
            cameras=copy.deepcopy(source.cameras or []),
            samplers=copy.deepcopy(source.samplers or []),
            extensionsUsed=list(source.extensionsUsed or []),
            extensionsRequired=list(source.extensionsRequired or []),
            extensions=copy.deepcopy(source.extensions or {}),
            extras=copy.deepcopy(source.extras or {}),
        )

    def _items(self, kind: str) -> list:
        items = getattr(self.gltf, kind)
        if items is None:
            items = []
            setattr(self.gltf, kind, items)
        return items

    def resolve(self, kind: str, index: Optional[int]) -> None:
        """Raise :class:`MalformedInput` unless *index* exists in the new document."""
        if index is None:
            return
        if not isinstance(index, int) or not (0 <= index < len(self._items(kind))):
            raise MalformedInput(f"Dangling reference: {kind}[{index}] does not exist in the output document")

    def push(self, kind: str, entity: Any) -> int:
        for target_kind, index in _references(kind, entity):
            self.resolve(target_kind, index)
        items = self._items(kind)
        items.append(entity)
        return len(items) - 1

    def append_view(self, data: bytes, template: Optional[pygltflib.BufferView] = None) -> int:
        """Append *data* to the blob on a 4-byte boundary and push its view."""
        pad_to_4bytes(self.blob)
        offset = len(self.blob)
        self.blob += data
        view = copy.deepcopy(template) if template is not None else pygltflib.BufferView()
        view.buffer = 0
        view.byteOffset = offset
        view.byteLength = len(data)
        return self.push("bufferViews", view)

    def ensure_extension(self, name: str, required: bool = True) -> None:
        used = self._items("extensionsUsed")
        if name not in used:
            used.append(name)
        if required:
            required_list = self._items("extensionsRequired")
            if name not in required_list:
                required_list.append(name)

    def finish(self) -> Tuple[pygltflib.GLTF2, bytes]:
        """Pad the blob, add the single buffer and check the pass-through arrays."""
        pad_to_4bytes(self.blob)
        if not self.blob:
            # a buffer must declare at least one byte
            self.blob += b"\x00" * 4
        self.gltf.buffers = [pygltflib.Buffer(byteLength=len(self.blob))]
        for kind in ("nodes", "scenes"):
            for entity in self._items(kind):
                for target_kind, index in _references(kind, entity):
                    self.resolve(target_kind, index)
        if self.gltf.scene is not None:
            self.resolve("scenes", self.gltf.scene)
        log.debug(
            "Built document: %d views, %d accessors, %d images, %d bytes of binary data",
            len(self._items("bufferViews")),
            len(self._items("accessors")),
            len(self._items("images")),
            len(self.blob),
        )
        return self.gltf, bytes(self.blob)

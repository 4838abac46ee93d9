from __future__ import annotations

import io
import json
import struct
from typing import Any, Dict, List, Optional, Tuple

import numpy
import pytest
from PIL import Image

from glbopt.codec import FORMAT_MIME, EncodedImage
from glbopt.errors import ConversionError

FLOAT = 5126
UNSIGNED_SHORT = 5123


def png_bytes(width: int, height: int, color=(200, 30, 30, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def jpeg_bytes(width: int, height: int, color=(30, 200, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()


class GlbWriter:
    """Assemble small GLB files from plain dicts for the tests."""

    def __init__(self) -> None:
        self.doc: Dict[str, Any] = {
            "asset": {"version": "2.0", "generator": "glbopt tests"},
            "scene": 0,
            "scenes": [{"nodes": []}],
            "nodes": [],
            "meshes": [],
        }
        self.blob = bytearray()

    def _list(self, key: str) -> List[Any]:
        return self.doc.setdefault(key, [])

    def add(self, key: str, entity: Dict[str, Any]) -> int:
        items = self._list(key)
        items.append(entity)
        return len(items) - 1

    def view(self, data: bytes, **extra) -> int:
        self.blob.extend(b"\x00" * (-len(self.blob) % 4))
        view = {"buffer": 0, "byteOffset": len(self.blob), "byteLength": len(data)}
        view.update(extra)
        self.blob.extend(data)
        return self.add("bufferViews", view)

    def positions(self, points, stride: Optional[int] = None, with_bounds: bool = True) -> int:
        arr = numpy.asarray(points, dtype="<f4").reshape(-1, 3)
        if stride and stride > 12:
            raw = bytearray(stride * len(arr))
            for i, p in enumerate(arr):
                raw[i * stride:i * stride + 12] = p.tobytes()
            view = self.view(bytes(raw), byteStride=stride, target=34962)
        else:
            view = self.view(arr.tobytes(), target=34962)
        accessor = {"bufferView": view, "componentType": FLOAT, "count": len(arr), "type": "VEC3"}
        if with_bounds:
            accessor["min"] = [float(v) for v in arr.min(axis=0)]
            accessor["max"] = [float(v) for v in arr.max(axis=0)]
        return self.add("accessors", accessor)

    def floats(self, values, accessor_type: str = "SCALAR") -> int:
        arr = numpy.asarray(values, dtype="<f4")
        components = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4, "MAT4": 16}[accessor_type]
        view = self.view(arr.tobytes())
        return self.add(
            "accessors",
            {"bufferView": view, "componentType": FLOAT, "count": arr.size // components, "type": accessor_type},
        )

    def indices(self, values) -> int:
        arr = numpy.asarray(values, dtype="<u2")
        view = self.view(arr.tobytes(), target=34963)
        return self.add(
            "accessors", {"bufferView": view, "componentType": UNSIGNED_SHORT, "count": len(arr), "type": "SCALAR"}
        )

    def image(self, data: bytes, mime: str = "image/png", name: Optional[str] = None) -> int:
        image: Dict[str, Any] = {"bufferView": self.view(data), "mimeType": mime}
        if name is not None:
            image["name"] = name
        return self.add("images", image)

    def texture(self, image: int, sampler: Optional[int] = None) -> int:
        texture: Dict[str, Any] = {"source": image}
        if sampler is not None:
            texture["sampler"] = sampler
        return self.add("textures", texture)

    def mesh(self, primitives: List[Dict[str, Any]], with_node: bool = True) -> int:
        index = self.add("meshes", {"primitives": primitives})
        if with_node:
            node = self.add("nodes", {"mesh": index})
            self.doc["scenes"][0]["nodes"].append(node)
        return index

    def build(self, include_bin: bool = True) -> bytes:
        self.blob.extend(b"\x00" * (-len(self.blob) % 4))
        doc = dict(self.doc)
        if include_bin:
            doc["buffers"] = [{"byteLength": len(self.blob)}]
        json_bytes = json.dumps(doc).encode("utf-8")
        json_bytes += b" " * (-len(json_bytes) % 4)
        chunks = struct.pack("<I4s", len(json_bytes), b"JSON") + json_bytes
        if include_bin:
            chunks += struct.pack("<I4s", len(self.blob), b"BIN\x00") + bytes(self.blob)
        return struct.pack("<4sII", b"glTF", 2, 12 + len(chunks)) + chunks


def parse_glb(data: bytes) -> Tuple[Dict[str, Any], bytes]:
    magic, version, length = struct.unpack_from("<4sII", data, 0)
    assert magic == b"glTF"
    assert version == 2
    assert length == len(data)
    json_len, json_type = struct.unpack_from("<I4s", data, 12)
    assert json_type == b"JSON"
    doc = json.loads(data[20:20 + json_len].decode("utf-8"))
    offset = 20 + json_len
    bin_len, bin_type = struct.unpack_from("<I4s", data, offset)
    assert bin_type == b"BIN\x00"
    return doc, data[offset + 8:offset + 8 + bin_len]


def read_positions(doc: Dict[str, Any], blob: bytes, accessor_index: int) -> numpy.ndarray:
    accessor = doc["accessors"][accessor_index]
    view = doc["bufferViews"][accessor["bufferView"]]
    stride = view.get("byteStride") or 12
    start = (view.get("byteOffset") or 0) + (accessor.get("byteOffset") or 0)
    return numpy.ndarray(
        shape=(accessor["count"], 3), dtype="<f4", buffer=blob, offset=start, strides=(stride, 4)
    ).copy()


class FakeCodec:
    """Records every request and returns a small tagged payload."""

    def __init__(self, fail_on: Optional[str] = None):
        self.calls: List[Dict[str, Any]] = []
        self.fail_on = fail_on

    def encode(self, data, size, fmt, role, profile) -> EncodedImage:
        self.calls.append({"size": size, "fmt": fmt, "role": role, "profile": profile, "source_len": len(data)})
        if self.fail_on is not None and role.value == self.fail_on:
            raise ConversionError("encoder exploded")
        payload = f"{fmt}:{size[0]}x{size[1]}:{role.value}".encode("utf-8")
        return EncodedImage(payload, FORMAT_MIME[fmt], size[0], size[1])


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()


def textured_model(
    texture_edge: int = 8,
    normal_map: bool = True,
    base_name: Optional[str] = "wall.PNG",
) -> GlbWriter:
    """One triangle with base color, metallic-roughness and normal textures."""
    w = GlbWriter()
    sampler = w.add("samplers", {"magFilter": 9729, "minFilter": 9987})
    position = w.positions([(-2, 0, -1), (2, 0, 3), (0, 4, 1)])
    normal = w.floats([0, 1, 0] * 3, "VEC3")
    uv = w.floats([0, 0, 1, 0, 0, 1], "VEC2")
    indices = w.indices([0, 1, 2])

    base = w.texture(w.image(png_bytes(texture_edge, texture_edge), name=base_name), sampler)
    mr = w.texture(w.image(jpeg_bytes(texture_edge, texture_edge), mime="image/jpeg", name="mr.jpg"), sampler)
    material: Dict[str, Any] = {
        "name": "painted",
        "pbrMetallicRoughness": {
            "baseColorTexture": {"index": base},
            "metallicRoughnessTexture": {"index": mr},
        },
    }
    if normal_map:
        normal_tex = w.texture(w.image(png_bytes(texture_edge, texture_edge, (128, 128, 255, 255)), name="n.png"))
        material["normalTexture"] = {"index": normal_tex, "scale": 1.0}
    mat = w.add("materials", material)

    w.mesh(
        [
            {
                "attributes": {"POSITION": position, "NORMAL": normal, "TEXCOORD_0": uv},
                "indices": indices,
                "material": mat,
            }
        ]
    )
    w.add("cameras", {"type": "perspective", "perspective": {"yfov": 0.8, "znear": 0.1}})
    return w

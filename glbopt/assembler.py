"""Rebuild a GLB: relocate geometry, re-encode textures, repack.

The source document is walked once, top to bottom. Meshes and skins keep
their positions in their arrays so nodes copied verbatim stay valid; every
other entity is rebuilt on first use and shared afterwards.
"""

from __future__ import annotations

import copy
import logging
from typing import BinaryIO, Optional, Sequence, Union

import pygltflib

from .accessors import relocate_attributes, relocate_optional
from .builder import DocumentBuilder
from .codec import TextureCodec
from .config import KTX2_EXTENSION, OptimizeOptions, TextureRole
from .container import pack_container, read_container
from .pivot import center_bottom_offset, scene_bounds
from .textures import Codec, convert_extension_textures, convert_texture

log = logging.getLogger(__name__)


def _convert_slot(builder, info, role, options, codec):
    if info is None:
        return None
    return convert_texture(builder, info, role, options, codec)


def rebuild_material(
    builder: DocumentBuilder, index: int, options: OptimizeOptions, codec: Codec
) -> Optional[int]:
    """Return the new index of source material *index*, building it on first use."""
    known = builder.index_map.get("materials", index)
    if known is not None:
        return known
    materials = builder.source.materials or []
    if not (0 <= index < len(materials)):
        log.warning("Primitive references missing material %d, leaving it unassigned", index)
        return None

    material = materials[index]
    new_material = copy.deepcopy(material)
    pbr = material.pbrMetallicRoughness
    if pbr is not None:
        new_pbr = new_material.pbrMetallicRoughness
        new_pbr.baseColorTexture = _convert_slot(
            builder, pbr.baseColorTexture, TextureRole.BASE_COLOR, options, codec
        )
        new_pbr.metallicRoughnessTexture = _convert_slot(
            builder, pbr.metallicRoughnessTexture, TextureRole.METALLIC_ROUGHNESS, options, codec
        )
    if options.drop_normal_maps:
        new_material.normalTexture = None
    else:
        new_material.normalTexture = _convert_slot(
            builder, material.normalTexture, TextureRole.NORMAL, options, codec
        )
    new_material.occlusionTexture = _convert_slot(
        builder, material.occlusionTexture, TextureRole.OCCLUSION, options, codec
    )
    new_material.emissiveTexture = _convert_slot(
        builder, material.emissiveTexture, TextureRole.EMISSIVE, options, codec
    )
    if material.extensions:
        new_material.extensions = convert_extension_textures(builder, material.extensions, options, codec)
    return builder.index_map.record("materials", index, builder.push("materials", new_material))


def rebuild_primitive(
    builder: DocumentBuilder,
    primitive: pygltflib.Primitive,
    options: OptimizeOptions,
    codec: Codec,
    pivot_offset: Optional[Sequence[float]],
    label: str,
) -> pygltflib.Primitive:
    new_primitive = copy.deepcopy(primitive)
    new_primitive.indices = relocate_optional(builder, primitive.indices, f"{label} indices")
    new_primitive.attributes = relocate_attributes(builder, primitive.attributes, pivot_offset, label)
    if primitive.targets:
        # morph targets hold displacements, the pivot does not move them
        new_primitive.targets = [
            relocate_attributes(builder, target, None, f"{label} morph target {i}")
            for i, target in enumerate(primitive.targets)
        ]
    if primitive.material is not None:
        new_primitive.material = rebuild_material(builder, primitive.material, options, codec)
    return new_primitive


def rebuild_skin(builder: DocumentBuilder, skin: pygltflib.Skin, label: str) -> pygltflib.Skin:
    new_skin = copy.deepcopy(skin)
    new_skin.inverseBindMatrices = relocate_optional(
        builder, skin.inverseBindMatrices, f"{label} inverseBindMatrices"
    )
    return new_skin


def rebuild_animation(builder: DocumentBuilder, animation: pygltflib.Animation, label: str) -> pygltflib.Animation:
    """Relocate sampler data; drop samplers without data and the channels using them."""
    new_animation = copy.deepcopy(animation)
    new_animation.samplers = []
    sampler_map = {}
    for i, sampler in enumerate(animation.samplers or []):
        new_input = relocate_optional(builder, sampler.input, f"{label} sampler {i} input")
        new_output = relocate_optional(builder, sampler.output, f"{label} sampler {i} output")
        if new_input is None or new_output is None:
            continue
        new_sampler = copy.deepcopy(sampler)
        new_sampler.input = new_input
        new_sampler.output = new_output
        sampler_map[i] = len(new_animation.samplers)
        new_animation.samplers.append(new_sampler)

    new_animation.channels = []
    for channel in animation.channels or []:
        if channel.sampler not in sampler_map:
            log.warning("Dropping %s channel: sampler %s has no data", label, channel.sampler)
            continue
        new_channel = copy.deepcopy(channel)
        new_channel.sampler = sampler_map[channel.sampler]
        new_animation.channels.append(new_channel)
    return new_animation


def rebuild(
    gltf: pygltflib.GLTF2,
    blob: bytes,
    options: OptimizeOptions,
    codec: Optional[Codec] = None,
) -> DocumentBuilder:
    """Run the single reconstruction pass and return the filled builder."""
    if codec is None:
        codec = TextureCodec()

    pivot_offset = None
    if options.recenter_pivot:
        bounds = scene_bounds(gltf, blob)
        if bounds is None:
            log.info("No POSITION data found, pivot left unchanged")
        else:
            pivot_offset = center_bottom_offset(bounds)
            log.info("Bounds %s..%s, moving pivot by %s", bounds.min_xyz, bounds.max_xyz, pivot_offset)

    builder = DocumentBuilder(gltf, blob)
    if options.transcode_textures:
        builder.ensure_extension(KTX2_EXTENSION)

    for mesh_index, mesh in enumerate(gltf.meshes or []):
        new_mesh = copy.deepcopy(mesh)
        new_mesh.primitives = [
            rebuild_primitive(builder, primitive, options, codec, pivot_offset, f"mesh {mesh_index} primitive {i}")
            for i, primitive in enumerate(mesh.primitives or [])
        ]
        builder.push("meshes", new_mesh)

    for skin_index, skin in enumerate(gltf.skins or []):
        builder.push("skins", rebuild_skin(builder, skin, f"skin {skin_index}"))

    for animation_index, animation in enumerate(gltf.animations or []):
        builder.push("animations", rebuild_animation(builder, animation, f"animation {animation_index}"))

    return builder


def optimize(
    source: Union[bytes, bytearray, BinaryIO],
    options: Optional[OptimizeOptions] = None,
    codec: Optional[Codec] = None,
) -> bytes:
    """Rewrite a GLB container according to *options* and return the new bytes."""
    if options is None:
        options = OptimizeOptions()
    gltf, blob = read_container(source)
    builder = rebuild(gltf, blob, options, codec)
    new_gltf, new_blob = builder.finish()
    return pack_container(new_gltf, new_blob)

"""Re-encode the images behind material texture slots."""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Optional, Protocol, Tuple

import pygltflib

from .builder import DocumentBuilder, is_texture_info
from .codec import MIME_KTX2, EncodedImage
from .config import OptimizeOptions, QualityProfile, TextureRole
from .errors import ConversionError, MissingData
from .spans import texture_image, texture_image_span

log = logging.getLogger(__name__)

_IMAGE_SUFFIX = re.compile(r"\.(jpe?g|png|webp|ktx2)", re.IGNORECASE)


class Codec(Protocol):
    def encode(
        self,
        data: bytes,
        size: Tuple[int, int],
        fmt: str,
        role: TextureRole,
        profile: QualityProfile,
    ) -> EncodedImage: ...


def ktx2_name(name: Optional[str]) -> Optional[str]:
    """``wall.PNG`` -> ``wall.ktx2``; ``wall`` -> ``wall.ktx2``."""
    if name is None:
        return None
    updated, replaced = _IMAGE_SUFFIX.subn(".ktx2", name)
    if not replaced:
        return f"{name}.ktx2"
    return updated


def output_format(role: TextureRole, transcode: bool) -> str:
    if transcode:
        return "ktx2"
    return "png" if role.lossless else "jpeg"


def append_image(builder: DocumentBuilder, image: pygltflib.Image, data: bytes, mime_type: str) -> int:
    """Embed *data* as a clone of *image* and return the new image index."""
    new_image = copy.deepcopy(image)
    new_image.bufferView = builder.append_view(data)
    new_image.mimeType = mime_type
    if mime_type == MIME_KTX2:
        new_image.name = ktx2_name(image.name)
        new_image.uri = ktx2_name(image.uri)
        if new_image.name is None:
            new_image.name = f"texture_{len(builder.gltf.images or [])}.ktx2"
    return builder.push("images", new_image)


def _clone_texture(texture: pygltflib.Texture, image_index: int) -> pygltflib.Texture:
    new_texture = copy.deepcopy(texture)
    new_texture.source = image_index
    if new_texture.extensions:
        # image-source extensions (KHR_texture_basisu, EXT_texture_webp...) point at old images
        new_texture.extensions = {
            name: ext
            for name, ext in new_texture.extensions.items()
            if not (isinstance(ext, dict) and "source" in ext)
        }
    return new_texture


def convert_texture_index(
    builder: DocumentBuilder,
    texture_index: int,
    role: TextureRole,
    options: OptimizeOptions,
    codec: Codec,
) -> Optional[int]:
    """Re-encode source texture *texture_index* for *role* and return its new index.

    Returns ``None`` when the image data is missing, so the caller drops the
    slot. Codec failures raise :class:`ConversionError` naming the role and
    the source texture index.
    """
    key = (texture_index, role)
    new_texture_index = builder.index_map.get("textures", key)

    if new_texture_index is None:
        try:
            source_bytes = texture_image_span(builder.source, builder.source_blob, texture_index)
        except MissingData as exc:
            log.warning("Dropping %s texture: %s", role.value, exc)
            return None

        edge = options.edge_for(role)
        fmt = output_format(role, options.transcode_textures)
        try:
            encoded = codec.encode(source_bytes, (edge, edge), fmt, role, options.profile_for(role))
        except (ConversionError, OSError, ValueError) as exc:
            raise ConversionError(str(exc), role=role.value, texture_index=texture_index) from exc

        texture, image = texture_image(builder.source, texture_index)
        image_index = append_image(builder, image, encoded.data, encoded.mime_type)
        new_texture_index = builder.push("textures", _clone_texture(texture, image_index))
        builder.index_map.record("textures", key, new_texture_index)
        log.info(
            "Texture %d (%s): %d -> %d bytes, %s %dx%d",
            texture_index,
            role.value,
            len(source_bytes),
            len(encoded.data),
            encoded.mime_type,
            encoded.width,
            encoded.height,
        )
    return new_texture_index


def convert_texture(
    builder: DocumentBuilder,
    info: Any,
    role: TextureRole,
    options: OptimizeOptions,
    codec: Codec,
) -> Optional[Any]:
    """Return a copy of texture-info *info* retargeted at the re-encoded texture."""
    new_texture_index = convert_texture_index(builder, info.index, role, options, codec)
    if new_texture_index is None:
        return None
    new_info = copy.deepcopy(info)
    new_info.index = new_texture_index
    return new_info


def extension_slot_role(slot: str) -> TextureRole:
    """Role for a texture slot found inside a material extension."""
    if "normal" in slot.lower():
        return TextureRole.NORMAL
    return TextureRole.BASE_COLOR


def convert_extension_textures(
    builder: DocumentBuilder,
    value: Any,
    options: OptimizeOptions,
    codec: Codec,
) -> Any:
    """Return a copy of material extension data with every texture slot re-encoded.

    Slots whose image data is missing are removed.
    """
    if isinstance(value, dict):
        rebuilt = {}
        for slot, item in value.items():
            if is_texture_info(item):
                new_texture_index = convert_texture_index(
                    builder, item["index"], extension_slot_role(slot), options, codec
                )
                if new_texture_index is None:
                    continue
                item = copy.deepcopy(item)
                item["index"] = new_texture_index
            else:
                item = convert_extension_textures(builder, item, options, codec)
            rebuilt[slot] = item
        return rebuilt
    if isinstance(value, list):
        return [convert_extension_textures(builder, item, options, codec) for item in value]
    return copy.deepcopy(value)

"""Options for one optimisation run and the per-role encoder profiles."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional

TOOL_NAME = "glbopt"
KTX2_EXTENSION = "KHR_texture_basisu"
DEFAULT_TEXTURE_EDGE = 1024


class TextureRole(str, Enum):
    BASE_COLOR = "base color"
    NORMAL = "normal"
    METALLIC_ROUGHNESS = "metallic/roughness"
    OCCLUSION = "occlusion"
    EMISSIVE = "emissive"

    @property
    def half_size(self) -> bool:
        """Property maps tolerate a lower resolution than color and normals."""
        return self in (TextureRole.METALLIC_ROUGHNESS, TextureRole.OCCLUSION)

    @property
    def lossless(self) -> bool:
        return self is TextureRole.NORMAL


@dataclass(frozen=True)
class QualityProfile:
    # Basis Universal ETC1S parameters
    quality_level: int = 150
    endpoint_rdo: float = 1.25
    selector_rdo: float = 1.25
    # Pillow JPEG quality for the non-KTX2 path
    jpeg_quality: int = 90


STANDARD_PROFILE = QualityProfile()
NORMAL_PROFILE = QualityProfile(quality_level=180, endpoint_rdo=1.0, selector_rdo=1.0, jpeg_quality=95)

DEFAULT_PROFILES: Dict[TextureRole, QualityProfile] = {
    TextureRole.BASE_COLOR: STANDARD_PROFILE,
    TextureRole.NORMAL: NORMAL_PROFILE,
    TextureRole.METALLIC_ROUGHNESS: STANDARD_PROFILE,
    TextureRole.OCCLUSION: STANDARD_PROFILE,
    TextureRole.EMISSIVE: STANDARD_PROFILE,
}


@dataclass
class OptimizeOptions:
    target_texture_edge: int = DEFAULT_TEXTURE_EDGE
    drop_normal_maps: bool = False
    transcode_textures: bool = False
    recenter_pivot: bool = False
    profiles: Mapping[TextureRole, QualityProfile] = field(default_factory=lambda: dict(DEFAULT_PROFILES))

    def __post_init__(self) -> None:
        if not isinstance(self.target_texture_edge, int) or self.target_texture_edge <= 0:
            raise ValueError(f"target_texture_edge must be a positive integer, got {self.target_texture_edge!r}")

    def edge_for(self, role: TextureRole) -> int:
        if role.half_size:
            return max(1, self.target_texture_edge // 2)
        return self.target_texture_edge

    def profile_for(self, role: TextureRole) -> QualityProfile:
        return self.profiles.get(role, STANDARD_PROFILE)


def find_basisu(explicit: Optional[str] = None) -> Optional[str]:
    """Return the basisu executable to use, or ``None`` if none is installed."""
    candidates = [
        explicit or "",
        os.getenv("GLBOPT_BASISU", "").strip(),
        shutil.which("basisu") or "",
    ]
    for candidate in candidates:
        if candidate and (os.path.isfile(candidate) or shutil.which(candidate)):
            return candidate
    return None

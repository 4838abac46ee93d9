"""Rewrite GLB containers: re-encode embedded textures, recenter the pivot."""

from .assembler import optimize, rebuild
from .codec import EncodedImage, TextureCodec
from .config import DEFAULT_PROFILES, OptimizeOptions, QualityProfile, TextureRole
from .errors import ConversionError, GlbOptError, MalformedInput, MissingData

__version__ = "0.1.0"

__all__ = [
    "ConversionError",
    "DEFAULT_PROFILES",
    "EncodedImage",
    "GlbOptError",
    "MalformedInput",
    "MissingData",
    "OptimizeOptions",
    "QualityProfile",
    "TextureCodec",
    "TextureRole",
    "optimize",
    "rebuild",
]

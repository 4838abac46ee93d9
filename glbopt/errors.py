"""Exception types raised while rebuilding a GLB container."""

from __future__ import annotations

from typing import Optional


class GlbOptError(RuntimeError):
    pass


class MissingData(GlbOptError):
    """A referenced view, accessor or image is absent or outside the blob.

    Recovered locally: the attribute or texture slot that needed the data is
    dropped from the output.
    """


class MalformedInput(GlbOptError):
    """The source container cannot be parsed or carries no binary chunk."""


class ConversionError(GlbOptError):
    """The image codec failed for one texture."""

    def __init__(self, message: str, role: Optional[str] = None, texture_index: Optional[int] = None):
        self.role = role
        self.texture_index = texture_index
        if role is not None and texture_index is not None:
            message = f"Failed to process {role} texture (texture index: {texture_index}): {message}"
        super().__init__(message)

"""Image resize and encode service.

JPEG and PNG go through Pillow. KTX2 output is produced by the Basis
Universal command line encoder (``basisu``) from a temporary RGBA PNG, then
tagged with key/value metadata.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from . import ktx2
from .config import TOOL_NAME, QualityProfile, TextureRole, find_basisu
from .errors import ConversionError

log = logging.getLogger(__name__)

MIME_JPEG = "image/jpeg"
MIME_PNG = "image/png"
MIME_KTX2 = "image/ktx2"

FORMAT_MIME = {
    "jpeg": MIME_JPEG,
    "png": MIME_PNG,
    "ktx2": MIME_KTX2,
}


@dataclass(frozen=True)
class EncodedImage:
    data: bytes
    mime_type: str
    width: int
    height: int


def _decode(data: bytes) -> Image.Image:
    try:
        im = Image.open(io.BytesIO(data))
        im.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ConversionError(f"Could not decode source image: {exc}") from exc
    return im


def _fit(im: Image.Image, width: int, height: int) -> Image.Image:
    """Resize to exactly ``width x height`` unless the image already fits."""
    if im.width > width or im.height > height:
        if im.mode not in ("RGB", "RGBA", "L", "LA"):
            im = im.convert("RGBA")
        return im.resize((width, height), Image.Resampling.LANCZOS)
    return im


class TextureCodec:
    """Default codec: Pillow for JPEG/PNG, ``basisu`` for KTX2."""

    def __init__(self, basisu: Optional[str] = None, timeout: Optional[float] = None):
        self._basisu = basisu
        self.timeout = timeout

    @property
    def basisu(self) -> Optional[str]:
        if self._basisu is None:
            self._basisu = find_basisu()
        return self._basisu

    def encode(
        self,
        data: bytes,
        size: Tuple[int, int],
        fmt: str,
        role: TextureRole,
        profile: QualityProfile,
    ) -> EncodedImage:
        width, height = size
        im = _fit(_decode(data), width, height)
        if fmt == "jpeg":
            return self._encode_jpeg(im, profile)
        if fmt == "png":
            return self._encode_png(im)
        if fmt == "ktx2":
            return self._encode_ktx2(im, role, profile)
        raise ConversionError(f"Unsupported output format: {fmt}")

    @staticmethod
    def _encode_jpeg(im: Image.Image, profile: QualityProfile) -> EncodedImage:
        if im.mode not in ("RGB", "L"):
            im = im.convert("RGB")
        buf = io.BytesIO()
        try:
            im.save(buf, format="JPEG", quality=profile.jpeg_quality)
        except (OSError, ValueError) as exc:
            raise ConversionError(f"JPEG encode failed: {exc}") from exc
        return EncodedImage(buf.getvalue(), MIME_JPEG, im.width, im.height)

    @staticmethod
    def _encode_png(im: Image.Image) -> EncodedImage:
        buf = io.BytesIO()
        try:
            im.save(buf, format="PNG")
        except (OSError, ValueError) as exc:
            raise ConversionError(f"PNG encode failed: {exc}") from exc
        return EncodedImage(buf.getvalue(), MIME_PNG, im.width, im.height)

    def _encode_ktx2(self, im: Image.Image, role: TextureRole, profile: QualityProfile) -> EncodedImage:
        basisu = self.basisu
        if basisu is None:
            raise ConversionError("basisu executable not found (set GLBOPT_BASISU or add it to PATH)")

        temp_dir = tempfile.mkdtemp(prefix="glbopt_")
        try:
            src_path = os.path.join(temp_dir, "source.png")
            dst_path = os.path.join(temp_dir, "texture.ktx2")
            im.convert("RGBA").save(src_path, format="PNG")
            cmd = [
                basisu,
                "-ktx2",
                "-linear",
                "-q",
                str(profile.quality_level),
                "-endpoint_rdo_thresh",
                str(profile.endpoint_rdo),
                "-selector_rdo_thresh",
                str(profile.selector_rdo),
                "-file",
                src_path,
                "-output_file",
                dst_path,
            ]
            log.debug("Encoding %s texture %dx%d: %s", role.value, im.width, im.height, " ".join(cmd))
            try:
                subprocess.run(
                    cmd,
                    check=True,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    timeout=self.timeout,
                )
            except subprocess.CalledProcessError as exc:
                detail = (exc.stderr or exc.stdout or b"").decode("utf-8", errors="replace").strip()
                raise ConversionError(f"basisu exited with status {exc.returncode}: {detail[-500:]}") from exc
            except (OSError, subprocess.TimeoutExpired) as exc:
                raise ConversionError(f"basisu could not be run: {exc}") from exc

            with open(dst_path, "rb") as f:
                encoded = f.read()
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        encoded = ktx2.set_metadata(
            encoded,
            {
                "Tool": TOOL_NAME,
                "Dimensions": f"{im.width}x{im.height}",
                "CompressionMode": "ETC1S",
            },
        )
        return EncodedImage(encoded, MIME_KTX2, im.width, im.height)

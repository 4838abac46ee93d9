#!/usr/bin/env python3
"""Command-line GLB optimiser.

Usage:
  glbopt input.glb output.glb
  glbopt input.glb output.glb --size 2048 --ktx2 --center-pivot
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from .assembler import optimize
from .codec import TextureCodec
from .config import DEFAULT_TEXTURE_EDGE, OptimizeOptions
from .errors import GlbOptError
from .log import configure_logging

log = logging.getLogger("glbopt")


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Not an integer: {value}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"Must be greater than zero: {value}")
    return parsed


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Shrink the textures of a GLB and optionally move its pivot.")
    p.add_argument("input", type=Path, help="Input .glb")
    p.add_argument("output", type=Path, help="Output .glb")
    p.add_argument(
        "--size",
        type=_positive_int,
        default=DEFAULT_TEXTURE_EDGE,
        help=f"Max edge of color/normal textures; metallic-roughness gets half (default: {DEFAULT_TEXTURE_EDGE})",
    )
    p.add_argument("--drop-normal-maps", action="store_true", help="Remove normal textures from materials")
    p.add_argument("--ktx2", action="store_true", help="Transcode textures to KTX2 (Basis Universal ETC1S)")
    p.add_argument("--center-pivot", action="store_true", help="Move the pivot to the bottom center of the model")
    p.add_argument("--basisu", default=None, help="Path to the basisu executable (default: $GLBOPT_BASISU or PATH)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(level="DEBUG" if args.verbose else None)

    if not args.input.is_file():
        print(f"error: input not found: {args.input}", file=sys.stderr)
        return 1

    options = OptimizeOptions(
        target_texture_edge=args.size,
        drop_normal_maps=args.drop_normal_maps,
        transcode_textures=args.ktx2,
        recenter_pivot=args.center_pivot,
    )
    started = time.monotonic()
    try:
        with args.input.open("rb") as f:
            result = optimize(f, options, TextureCodec(basisu=args.basisu))
    except GlbOptError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(result)
    log.info(
        "Wrote %s: %d -> %d bytes in %.2fs",
        args.output,
        args.input.stat().st_size,
        len(result),
        time.monotonic() - started,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
Transform strategies, one per /api/<operation-id>:

- video: compress, convert, merge, GIF, speed change, MP3 (ffmpeg)
- image: compress, resize, convert, crop, blur, grayscale, colour picker (Pillow)
- pdf: merge, split, rotate (pypdf)
"""

from toolbox.engines.transforms.base import Arity, ParamKind, ParamSpec, Transform, TransformContext
from toolbox.engines.transforms.registry import TransformRegistry, build_default_registry

__all__ = [
    "Arity",
    "ParamKind",
    "ParamSpec",
    "Transform",
    "TransformContext",
    "TransformRegistry",
    "build_default_registry",
]

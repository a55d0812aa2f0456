"""
Image Transforms (Pillow)

Pillow work is CPU-bound and synchronous, so every strategy runs its body
in a worker thread via asyncio.to_thread.
"""

import asyncio
import re
from pathlib import Path
from typing import Optional, Dict, Any, Tuple

from PIL import Image, ImageFilter, UnidentifiedImageError

from toolbox.core.exceptions import NotFound, TransformFailure, ValidationFailure
from toolbox.core.logging import get_logger
from toolbox.engines.transforms.base import (
    ParamKind,
    ParamSpec,
    Transform,
    TransformContext,
)

logger = get_logger(__name__)

DEFAULT_QUALITY = 80
DEFAULT_BLUR_RADIUS = 5

# Encoders that cannot store an alpha channel or a palette
_OPAQUE_FORMATS = {"JPEG", "BMP", "PPM", "EPS", "PDF"}
_FORMAT_NAME = re.compile(r"^[a-z0-9]{2,5}$")


def _open_image(path: Path) -> Image.Image:
    try:
        image = Image.open(path)
        image.load()
        return image
    except FileNotFoundError:
        raise NotFound("Input image no longer exists.")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        # Pillow messages carry the absolute input path
        logger.warning("image_decode_failed", input=path.name, error=str(e), error_type=type(e).__name__)
        raise TransformFailure("Unsupported or corrupt image.")


def _pil_format(extension: str) -> Optional[str]:
    return Image.registered_extensions().get(f".{extension.lower()}")


def _to_8bit(image: Image.Image) -> Image.Image:
    """
    Bilevel, 16/32-bit integer and float images as 8-bit greyscale.
    Integer samples above 255 are treated as 16-bit and scaled down, not clipped.
    """
    if image.mode == "1":
        return image.convert("L")
    if image.mode.startswith("I"):
        wide = image.convert("I")
        if wide.getextrema()[1] > 255:
            wide = wide.point(lambda v: v * (1 / 256))
        return wide.convert("L")
    if image.mode == "F":
        return image.convert("L")
    return image


def _prepare_for(image: Image.Image, pil_format: str) -> Image.Image:
    if pil_format in _OPAQUE_FORMATS and image.mode not in ("RGB", "L", "CMYK"):
        if "A" in image.getbands() or image.mode == "P":
            background = Image.new("RGB", image.size, (255, 255, 255))
            rgba = image.convert("RGBA")
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        return _to_8bit(image).convert("RGB")
    return image


def _save(image: Image.Image, path: Path, pil_format: str, **options):
    try:
        _prepare_for(image, pil_format).save(path, format=pil_format, **options)
    except (KeyError, ValueError, OSError) as e:
        path.unlink(missing_ok=True)
        logger.warning("image_encode_failed", output=path.name, error=str(e), error_type=type(e).__name__)
        raise TransformFailure(f"Could not encode image as {pil_format}.")


def _source_format(image: Image.Image, path: Path) -> str:
    return image.format or _pil_format(path.suffix.lstrip(".")) or "PNG"


class ImageTransform(Transform):
    content_kind = "image"

    def resolve_extension(self, input_suffix: str, params: Dict[str, Any]) -> str:
        return self.output_extension or input_suffix or "png"

    async def run(self, ctx: TransformContext) -> Optional[str]:
        return await asyncio.to_thread(self.process, ctx)

    def process(self, ctx: TransformContext) -> Optional[str]:
        """Synchronous body, executed off the event loop."""
        source = ctx.input_paths[0]
        image = _open_image(source)
        result = self.apply(image, ctx.params)
        _save(result, ctx.output_path, self.output_format(image, source, ctx.params))
        return None

    def apply(self, image: Image.Image, params: Dict[str, Any]) -> Image.Image:
        return image

    def output_format(self, image: Image.Image, source: Path, params: Dict[str, Any]) -> str:
        return _source_format(image, source)


class ImageCompressor(ImageTransform):
    operation = "image-compressor"
    description = "Progressive, optimized JPEG at the requested quality."
    params = (
        ParamSpec(name="quality", kind=ParamKind.INT, default=DEFAULT_QUALITY, minimum=1, maximum=100),
    )
    output_prefix = "compressed"
    output_extension = "jpg"
    success_message = "Image compressed successfully!"

    def process(self, ctx: TransformContext) -> Optional[str]:
        image = _open_image(ctx.input_paths[0])
        _save(
            image,
            ctx.output_path,
            "JPEG",
            quality=ctx.params["quality"],
            progressive=True,
            optimize=True,
        )
        return None


class ImageResizer(ImageTransform):
    """Fit inside width x height, keep aspect ratio, never enlarge."""

    operation = "image-resizer"
    description = "Shrink an image to fit inside the given box."
    params = (
        ParamSpec(name="width", kind=ParamKind.INT, minimum=1, maximum=20000),
        ParamSpec(name="height", kind=ParamKind.INT, minimum=1, maximum=20000),
    )
    output_prefix = "resized"
    success_message = "Image resized successfully!"

    def validate(self, params: Dict[str, Any]):
        if params["width"] is None and params["height"] is None:
            raise ValidationFailure("Width or height is required.")

    def apply(self, image: Image.Image, params: Dict[str, Any]) -> Image.Image:
        box = (
            params["width"] or image.width,
            params["height"] or image.height,
        )
        resized = image.copy()
        resized.thumbnail(box, Image.LANCZOS)
        return resized


class ImageConverter(ImageTransform):
    operation = "image-converter"
    description = "Re-encode an image in another raster format."
    params = (
        ParamSpec(name="format", required=True, description="Target format, e.g. png, webp, jpg"),
    )
    output_prefix = "converted"
    success_message = "Image converted successfully!"

    def validate(self, params: Dict[str, Any]):
        params["format"] = params["format"].lower()
        if not _FORMAT_NAME.match(params["format"]):
            raise ValidationFailure(
                "Format must be a short file extension such as png or webp.",
                details={"parameter": "format", "value": params["format"]}
            )

    def resolve_extension(self, input_suffix: str, params: Dict[str, Any]) -> str:
        return params["format"]

    def output_format(self, image: Image.Image, source: Path, params: Dict[str, Any]) -> str:
        pil_format = _pil_format(params["format"])
        if pil_format is None or pil_format not in Image.SAVE:
            raise TransformFailure(f"Unsupported target format '{params['format']}'.")
        return pil_format


class ImageCropper(ImageTransform):
    operation = "image-cropper"
    description = "Cut out a width x height box whose top-left corner is (left, top)."
    params = (
        ParamSpec(name="width", kind=ParamKind.INT, required=True, minimum=1),
        ParamSpec(name="height", kind=ParamKind.INT, required=True, minimum=1),
        ParamSpec(name="left", kind=ParamKind.INT, required=True, minimum=0),
        ParamSpec(name="top", kind=ParamKind.INT, required=True, minimum=0),
    )
    output_prefix = "cropped"
    success_message = "Image cropped successfully!"

    def apply(self, image: Image.Image, params: Dict[str, Any]) -> Image.Image:
        left, top = params["left"], params["top"]
        right, bottom = left + params["width"], top + params["height"]
        if right > image.width or bottom > image.height:
            raise TransformFailure(
                f"Crop area {params['width']}x{params['height']} at ({left}, {top}) "
                f"is outside the {image.width}x{image.height} image.",
                details={"image_width": image.width, "image_height": image.height}
            )
        return image.crop((left, top, right, bottom))


class ImageBlur(ImageTransform):
    operation = "image-blur"
    description = "Gaussian blur with the given radius."
    params = (
        ParamSpec(name="radius", kind=ParamKind.INT, default=DEFAULT_BLUR_RADIUS, minimum=1, maximum=100),
    )
    output_prefix = "blurred"
    success_message = "Image blurred successfully!"

    def apply(self, image: Image.Image, params: Dict[str, Any]) -> Image.Image:
        if image.mode in ("P", "PA"):
            image = image.convert("RGBA")
        else:
            image = _to_8bit(image)
        return image.filter(ImageFilter.GaussianBlur(params["radius"]))


class ImageGrayscale(ImageTransform):
    operation = "image-grayscale"
    description = "Recolor an image to greyscale, keeping transparency."
    output_prefix = "grayscale"
    success_message = "Image converted to grayscale successfully!"

    def apply(self, image: Image.Image, params: Dict[str, Any]) -> Image.Image:
        if "A" in image.getbands() or (image.mode == "P" and "transparency" in image.info):
            return image.convert("LA")
        return _to_8bit(image).convert("L")


def dominant_color(image: Image.Image) -> Tuple[int, int, int]:
    """
    Most populated bin of a 16x16x16 RGB histogram, reported at the bin centre.
    Transparent pixels are ignored.
    """
    rgba = _to_8bit(image).convert("RGBA")
    rgb = rgba.convert("RGB")
    binned = rgb.point(lambda v: v >> 4)

    alpha = rgba.getchannel("A")
    if alpha.getextrema()[0] < 255:
        # Push fully transparent pixels into a sentinel bin outside 0-15
        opaque_mask = alpha.point(lambda a: 255 if a > 0 else 0)
        sentinel = Image.new("RGB", rgb.size, (255, 255, 255))
        sentinel.paste(binned, mask=opaque_mask)
        binned = sentinel

    colors = binned.getcolors(maxcolors=4097) or []
    colors = [(count, c) for count, c in colors if c != (255, 255, 255)]
    if not colors:
        raise TransformFailure("Image has no opaque pixels.")

    _, (r, g, b) = max(colors, key=lambda item: item[0])
    return (r << 4) + 8, (g << 4) + 8, (b << 4) + 8


class ImageColorPicker(ImageTransform):
    """Read-only: reports the dominant colour, writes no output file."""

    operation = "image-color-picker"
    description = "Dominant colour of an image as a hex triplet."
    produces_output = False
    success_message = "Dominant color extracted successfully!"

    def process(self, ctx: TransformContext) -> Optional[str]:
        image = _open_image(ctx.input_paths[0])
        r, g, b = dominant_color(image)
        return f"#{r:02x}{g:02x}{b:02x}"


IMAGE_TRANSFORMS = (
    ImageCompressor,
    ImageResizer,
    ImageConverter,
    ImageCropper,
    ImageBlur,
    ImageGrayscale,
    ImageColorPicker,
)

import pytest
from PIL import Image

from toolbox.core.exceptions import TransformFailure, ValidationFailure
from toolbox.engines.transforms.image import dominant_color
from toolbox.modules.artifacts.models import ProcessingRequest, Upload


async def _run(coordinator, operation, content, filename="picture.png", **params):
    return await coordinator.process(
        ProcessingRequest(
            operation=operation,
            uploads=[Upload(filename=filename, content=content)],
            params=params,
        )
    )


@pytest.mark.asyncio
async def test_compressor_writes_jpeg(coordinator, make_image):
    result = await _run(coordinator, "image-compressor", make_image(mode="RGBA", color=(0, 0, 255, 128)), quality="50")

    assert result.output.name.endswith("compressed-picture.jpg")
    with Image.open(result.output.path) as image:
        assert image.format == "JPEG"
        assert image.mode == "RGB"


@pytest.mark.asyncio
async def test_resizer_fits_box_and_keeps_aspect(coordinator, make_image):
    result = await _run(coordinator, "image-resizer", make_image(size=(400, 200)), width="100")

    with Image.open(result.output.path) as image:
        assert image.size == (100, 50)
        assert image.format == "PNG"


@pytest.mark.asyncio
async def test_resizer_never_enlarges(coordinator, make_image):
    result = await _run(coordinator, "image-resizer", make_image(size=(40, 30)), width="400", height="300")

    with Image.open(result.output.path) as image:
        assert image.size == (40, 30)


@pytest.mark.asyncio
async def test_resizer_requires_a_dimension(coordinator, make_image):
    with pytest.raises(ValidationFailure, match="Width or height"):
        await _run(coordinator, "image-resizer", make_image())


@pytest.mark.asyncio
async def test_converter_changes_format_and_extension(coordinator, make_image):
    result = await _run(coordinator, "image-converter", make_image(mode="RGBA", color=(0, 255, 0, 0)), format="JPG")

    assert result.output.name.endswith("converted-picture.jpg")
    with Image.open(result.output.path) as image:
        assert image.format == "JPEG"


@pytest.mark.asyncio
async def test_converter_unknown_format(coordinator, make_image):
    with pytest.raises(TransformFailure, match="Unsupported target format"):
        await _run(coordinator, "image-converter", make_image(), format="zzz")


@pytest.mark.asyncio
async def test_cropper_cuts_requested_box(coordinator, make_image):
    result = await _run(
        coordinator, "image-cropper", make_image(size=(100, 80)),
        width="30", height="20", left="10", top="5",
    )

    with Image.open(result.output.path) as image:
        assert image.size == (30, 20)


@pytest.mark.asyncio
async def test_cropper_box_outside_image(coordinator, make_image):
    with pytest.raises(TransformFailure, match="outside"):
        await _run(
            coordinator, "image-cropper", make_image(size=(50, 50)),
            width="40", height="40", left="20", top="0",
        )


@pytest.mark.asyncio
async def test_blur_keeps_size(coordinator, make_image):
    result = await _run(coordinator, "image-blur", make_image(size=(64, 48)))

    with Image.open(result.output.path) as image:
        assert image.size == (64, 48)


@pytest.mark.asyncio
async def test_grayscale_keeps_transparency(coordinator, make_image):
    opaque = await _run(coordinator, "image-grayscale", make_image())
    translucent = await _run(coordinator, "image-grayscale", make_image(mode="RGBA", color=(10, 20, 30, 100)))

    with Image.open(opaque.output.path) as image:
        assert image.mode == "L"
    with Image.open(translucent.output.path) as image:
        assert image.mode == "LA"


@pytest.mark.asyncio
async def test_corrupt_image(coordinator):
    with pytest.raises(TransformFailure, match="Unsupported or corrupt image"):
        await _run(coordinator, "image-blur", b"definitely not an image")


def test_dominant_color_picks_most_common_bin():
    image = Image.new("RGB", (10, 10), (200, 10, 10))
    image.paste((0, 0, 250), (0, 0, 3, 3))

    assert dominant_color(image) == (200, 8, 8)


def test_dominant_color_ignores_transparent_pixels():
    image = Image.new("RGBA", (10, 10), (0, 0, 0, 0))
    image.paste((0, 255, 0, 255), (0, 0, 4, 4))

    assert dominant_color(image) == (8, 248, 8)


def test_dominant_color_fully_transparent():
    with pytest.raises(TransformFailure):
        dominant_color(Image.new("RGBA", (4, 4), (0, 0, 0, 0)))


@pytest.mark.asyncio
@pytest.mark.parametrize("mode,fill", [("1", 1), ("I;16", 1000)])
async def test_blur_accepts_bilevel_and_16bit_images(coordinator, make_image, mode, fill):
    result = await _run(coordinator, "image-blur", make_image(size=(20, 20), color=fill, mode=mode))

    with Image.open(result.output.path) as image:
        assert image.size == (20, 20)
        assert image.mode == "L"


@pytest.mark.asyncio
async def test_color_picker_scales_16bit_samples(coordinator, make_image):
    result = await _run(coordinator, "image-color-picker", make_image(size=(8, 8), color=1000, mode="I;16"))

    # 1000 / 256 -> 3, which lands in the lowest bin
    assert result.text == "#080808"


@pytest.mark.asyncio
async def test_decode_error_does_not_reveal_store_paths(coordinator, store):
    with pytest.raises(TransformFailure) as exc_info:
        await _run(coordinator, "image-blur", b"definitely not an image")

    assert exc_info.value.message == "Unsupported or corrupt image."
    for directory in store.directories.values():
        assert str(directory) not in exc_info.value.message

"""
Tests for image transcoding and upload validation.
Images are generated in memory with Pillow.
"""

import io

import pytest
from PIL import Image

from course_importer.exceptions import ImageProcessError
from course_importer.models import SourceImage
from course_importer.transcoder import (
    ImageProcessingOptions,
    ImageTranscoder,
    format_file_size,
    process_image,
    process_multiple_images,
    replace_extension,
    validate_image_file,
)


def source(buffer: bytes, name: str = "imported.png", type: str = "image/png") -> SourceImage:
    return SourceImage(name=name, buffer=buffer, size=len(buffer), type=type)


def open_result(buffer: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(buffer))
    image.load()
    return image


class TestProcessImage:
    """Resizing and re-encoding."""

    def test_downsizes_to_fit_inside(self, make_image_bytes):
        result = process_image(source(make_image_bytes(size=(4000, 3000))))

        image = open_result(result.buffer)
        assert image.format == "WEBP"
        assert image.size == (1440, 1080)
        assert result.file_name == "imported.webp"
        assert result.mime_type == "image/webp"
        assert result.size == len(result.buffer)

    def test_never_enlarges(self, make_image_bytes):
        result = process_image(source(make_image_bytes(size=(100, 50))))
        assert open_result(result.buffer).size == (100, 50)

    def test_jpeg_output_from_transparent_png(self, make_image_bytes):
        buffer = make_image_bytes(size=(80, 80), mode="RGBA")
        options = ImageProcessingOptions(format='jpeg')

        result = process_image(source(buffer), options)

        image = open_result(result.buffer)
        assert image.format == "JPEG"
        assert image.mode == "RGB"
        assert result.file_name == "imported.jpeg"
        assert result.mime_type == "image/jpeg"

    def test_png_output(self, make_image_bytes):
        buffer = make_image_bytes(size=(30, 20), fmt="JPEG")
        options = ImageProcessingOptions(format='png')

        result = process_image(source(buffer, name="photo.jpg", type="image/jpeg"), options)

        assert open_result(result.buffer).format == "PNG"
        assert result.file_name == "photo.png"

    def test_cover_crops_to_box(self, make_image_bytes):
        options = ImageProcessingOptions(fit='cover')
        result = process_image(source(make_image_bytes(size=(4000, 3000))), options)
        assert open_result(result.buffer).size == (1920, 1080)

    def test_outside_keeps_covering_dimensions(self, make_image_bytes):
        options = ImageProcessingOptions(fit='outside')
        result = process_image(source(make_image_bytes(size=(4000, 3000))), options)
        assert open_result(result.buffer).size == (1920, 1440)

    def test_fill_clamps_each_side(self, make_image_bytes):
        options = ImageProcessingOptions(fit='fill')
        result = process_image(source(make_image_bytes(size=(3000, 500))), options)
        assert open_result(result.buffer).size == (1920, 500)

    def test_rejects_oversized_input(self):
        image = SourceImage(name="big.jpg", buffer=b"x", size=11 * 1024 * 1024, type="image/jpeg")

        with pytest.raises(ImageProcessError) as exc_info:
            process_image(image)

        assert "exceeds the maximum allowed size" in str(exc_info.value)

    def test_rejects_non_image_type(self, make_image_bytes):
        with pytest.raises(ImageProcessError) as exc_info:
            process_image(source(make_image_bytes(), type="text/html"))
        assert "must be an image" in str(exc_info.value)

    def test_undecodable_webp_falls_back_to_original(self):
        result = process_image(source(b"not really an image", name="imported.jpg", type="image/jpeg"))

        assert result.buffer == b"not really an image"
        assert result.file_name == "imported.webp"
        assert result.mime_type == "image/webp"

    def test_undecodable_jpeg_target_raises(self):
        options = ImageProcessingOptions(format='jpeg')
        with pytest.raises(ImageProcessError):
            process_image(source(b"garbage", type="image/jpeg"), options)

    def test_invalid_options(self):
        with pytest.raises(ValueError):
            ImageProcessingOptions(format='gif')
        with pytest.raises(ValueError):
            ImageProcessingOptions(fit='stretch')

    def test_process_multiple_images(self, make_image_bytes):
        images = [source(make_image_bytes(), name=f"{i}.png") for i in range(3)]

        results = process_multiple_images(images)

        assert [r.file_name for r in results] == ["0.webp", "1.webp", "2.webp"]

    def test_process_multiple_images_stops_on_error(self, make_image_bytes):
        images = [source(make_image_bytes()), source(b"x", type="application/pdf")]
        with pytest.raises(ImageProcessError):
            process_multiple_images(images)


class TestImageTranscoder:
    """Async Transcoder wrapper."""

    @pytest.mark.asyncio
    async def test_transcode_default_format(self, make_image_bytes):
        transcoder = ImageTranscoder()
        result = await transcoder.transcode(source(make_image_bytes()))
        assert result.mime_type == "image/webp"

    @pytest.mark.asyncio
    async def test_transcode_format_override(self, make_image_bytes):
        transcoder = ImageTranscoder(ImageProcessingOptions(max_width=10, max_height=10))

        result = await transcoder.transcode(source(make_image_bytes(size=(40, 20))), 'png')

        image = open_result(result.buffer)
        assert image.format == "PNG"
        assert image.size == (10, 5)


class TestHelpers:
    """File naming and upload validation helpers."""

    @pytest.mark.parametrize("name,expected", [
        ("imported.png", "imported.webp"),
        ("photo", "photo.webp"),
        ("trip.2024.jpg", "trip.2024.webp"),
    ])
    def test_replace_extension(self, name, expected):
        assert replace_extension(name, "webp") == expected

    @pytest.mark.parametrize("size,expected", [
        (0, "0 Bytes"),
        (500, "500 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (10 * 1024 * 1024, "10 MB"),
    ])
    def test_format_file_size(self, size, expected):
        assert format_file_size(size) == expected

    def test_validate_image_file_ok(self):
        result = validate_image_file("a.png", "image/png", 2048)
        assert result.is_valid
        assert result.error is None

    def test_validate_image_file_too_large(self):
        result = validate_image_file("a.png", "image/png", 12 * 1024 * 1024)
        assert not result.is_valid
        assert "12 MB" in result.error

    def test_validate_image_file_bad_type(self):
        result = validate_image_file("a.svg", "image/svg+xml", 100)
        assert not result.is_valid
        assert "not supported" in result.error

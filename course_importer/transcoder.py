"""
Image transcoding for course photos.
Resizes and re-encodes arbitrary input images with Pillow.
"""

import asyncio
import io
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol

import structlog
from PIL import Image, ImageOps

from .exceptions import ImageProcessError
from .models import ProcessedImage, SourceImage

logger = structlog.get_logger()

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
ALLOWED_UPLOAD_TYPES = {'image/jpeg', 'image/jpg', 'image/png', 'image/gif', 'image/webp'}

MIME_TYPES = {
    'webp': 'image/webp',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
}
PIL_FORMATS = {
    'webp': 'WEBP',
    'jpeg': 'JPEG',
    'png': 'PNG',
}
FIT_MODES = ('inside', 'outside', 'cover', 'fill')

_EXTENSION_PATTERN = re.compile(r"\.[^/.]+$")


@dataclass
class ImageProcessingOptions:
    max_width: int = 1920
    max_height: int = 1080
    quality: int = 80
    format: str = 'webp'
    fit: str = 'inside'

    def __post_init__(self):
        if self.format not in MIME_TYPES:
            raise ValueError(f"Unsupported output format: {self.format}")
        if self.fit not in FIT_MODES:
            raise ValueError(f"Unsupported fit mode: {self.fit}")


@dataclass
class ImageValidationResult:
    is_valid: bool
    error: Optional[str] = None


class Transcoder(Protocol):
    """Converts arbitrary image bytes to the normalized output format."""

    async def transcode(self, image: SourceImage, format: Optional[str] = None) -> ProcessedImage:
        ...


def format_file_size(size: int) -> str:
    """Human readable file size, e.g. '1.5 KB'."""
    if size <= 0:
        return "0 Bytes"
    k = 1024
    sizes = ['Bytes', 'KB', 'MB', 'GB']
    i = min(int(math.floor(math.log(size) / math.log(k))), len(sizes) - 1)
    return f"{round(size / k ** i, 2):g} {sizes[i]}"


def validate_image_file(name: str, content_type: str, size: int) -> ImageValidationResult:
    """Check an upload against the size limit and the allowed image types."""
    if size > MAX_FILE_SIZE:
        return ImageValidationResult(
            is_valid=False,
            error=f"File size {format_file_size(size)} exceeds the maximum allowed size of 10MB"
        )
    if content_type not in ALLOWED_UPLOAD_TYPES:
        return ImageValidationResult(
            is_valid=False,
            error=f"File type {content_type} is not supported. Please use JPG, PNG, GIF, or WebP"
        )
    return ImageValidationResult(is_valid=True)


def replace_extension(name: str, extension: str) -> str:
    return f"{_EXTENSION_PATTERN.sub('', name)}.{extension}"


def _target_size(width: int, height: int, options: ImageProcessingOptions):
    if options.fit == 'fill':
        return min(width, options.max_width), min(height, options.max_height)

    width_ratio = options.max_width / width
    height_ratio = options.max_height / height
    if options.fit == 'outside':
        scale = min(max(width_ratio, height_ratio), 1.0)
    else:
        scale = min(width_ratio, height_ratio, 1.0)
    return max(1, round(width * scale)), max(1, round(height * scale))


def _resize(image: Image.Image, options: ImageProcessingOptions) -> Image.Image:
    width, height = image.size
    if options.fit == 'cover':
        # Crop to the box only when the source covers it; never enlarge.
        if width >= options.max_width and height >= options.max_height:
            return ImageOps.fit(
                image, (options.max_width, options.max_height), Image.Resampling.LANCZOS
            )
        return image

    size = _target_size(width, height, options)
    if size != image.size:
        image = image.resize(size, Image.Resampling.LANCZOS)
    return image


def _prepare_mode(image: Image.Image, fmt: str) -> Image.Image:
    has_alpha = 'A' in image.getbands() or 'transparency' in image.info
    if fmt == 'jpeg':
        return image if image.mode == 'RGB' else image.convert('RGB')
    if image.mode in ('RGB', 'RGBA'):
        return image
    return image.convert('RGBA' if has_alpha else 'RGB')


def _encode(buffer: bytes, options: ImageProcessingOptions) -> bytes:
    with Image.open(io.BytesIO(buffer)) as source:
        source.load()
        image = _resize(source, options)
        image = _prepare_mode(image, options.format)

        output = io.BytesIO()
        save_kwargs = {'quality': options.quality}
        if options.format == 'png':
            save_kwargs = {'optimize': True}
        image.save(output, PIL_FORMATS[options.format], **save_kwargs)
        return output.getvalue()


def process_image(image: SourceImage, options: Optional[ImageProcessingOptions] = None) -> ProcessedImage:
    """
    Resize and re-encode one image.

    Raises:
        ImageProcessError: input too large, not an image, or undecodable
            when the target format is not webp
    """
    opts = options or ImageProcessingOptions()

    if image.size > MAX_FILE_SIZE:
        raise ImageProcessError(
            f"File size {image.size / 1024 / 1024:.2f}MB exceeds the maximum allowed size of 10MB"
        )
    if not image.type.startswith('image/'):
        raise ImageProcessError("File must be an image")

    logger.info("processing_image", name=image.name, type=image.type, size=len(image.buffer))
    file_name = replace_extension(image.name, opts.format)

    try:
        processed = _encode(image.buffer, opts)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        if opts.format != 'webp':
            raise ImageProcessError(f"Error processing image {image.name}: {e}") from e
        # Keep the original bytes under the webp name.
        logger.warning("image_processing_fallback", name=image.name, error=str(e))
        return ProcessedImage(
            buffer=image.buffer,
            file_name=file_name,
            mime_type='image/webp',
            size=len(image.buffer)
        )

    result = ProcessedImage(
        buffer=processed,
        file_name=file_name,
        mime_type=MIME_TYPES[opts.format],
        size=len(processed)
    )
    logger.info(
        "image_processed",
        file_name=result.file_name,
        mime_type=result.mime_type,
        size=result.size
    )
    return result


def process_multiple_images(
    images: List[SourceImage],
    options: Optional[ImageProcessingOptions] = None
) -> List[ProcessedImage]:
    """Process images in order; the first failure aborts the batch."""
    processed_images = []
    for image in images:
        try:
            processed_images.append(process_image(image, options))
        except ImageProcessError as e:
            logger.error("image_batch_failed", name=image.name, error=str(e))
            raise
    return processed_images


class ImageTranscoder:
    """Pillow-backed Transcoder. Encoding runs in a worker thread."""

    def __init__(self, options: Optional[ImageProcessingOptions] = None):
        self.options = options or ImageProcessingOptions()

    async def transcode(self, image: SourceImage, format: Optional[str] = None) -> ProcessedImage:
        options = self.options
        if format and format != options.format:
            options = ImageProcessingOptions(
                max_width=options.max_width,
                max_height=options.max_height,
                quality=options.quality,
                format=format,
                fit=options.fit
            )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, process_image, image, options)

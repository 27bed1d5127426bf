"""
Shared fixtures for course importer tests.
Fakes stand in for the network, the transcoder and the storage publisher.
"""

import io
from typing import Dict, List, Optional, Union

import pytest
from PIL import Image

from course_importer.exceptions import ImageFetchError, UpstreamFetchError
from course_importer.models import FetchedImage, ProcessedImage, SourceImage
from course_importer.transcoder import replace_extension


class FakeFetcher:
    """In-memory fetcher. Unknown URLs behave like a 404."""

    def __init__(self):
        self.pages: Dict[str, str] = {}
        self.images: Dict[str, Union[FetchedImage, Exception]] = {}
        self.page_calls: List[str] = []
        self.image_calls: List[str] = []

    def add_image(self, url: str, content: bytes = b"image-bytes", content_type: Optional[str] = "image/jpeg"):
        self.images[url] = FetchedImage(url=url, content=content, content_type=content_type)

    async def fetch_page(self, url: str) -> str:
        self.page_calls.append(url)
        if url not in self.pages:
            raise UpstreamFetchError("HTTP 404")
        return self.pages[url]

    async def fetch_image(self, url: str) -> FetchedImage:
        self.image_calls.append(url)
        result = self.images.get(url)
        if result is None:
            raise ImageFetchError("HTTP 404", url=url)
        if isinstance(result, Exception):
            raise result
        return result


class FakeTranscoder:
    """Relabels input as webp without touching the bytes."""

    def __init__(self):
        self.calls: List[SourceImage] = []
        self.fail_on: Dict[bytes, Exception] = {}

    async def transcode(self, image: SourceImage, format: Optional[str] = None) -> ProcessedImage:
        self.calls.append(image)
        if image.buffer in self.fail_on:
            raise self.fail_on[image.buffer]
        fmt = format or 'webp'
        return ProcessedImage(
            buffer=image.buffer,
            file_name=replace_extension(image.name, fmt),
            mime_type=f"image/{fmt}",
            size=len(image.buffer)
        )


class FakePublisher:
    """Returns predictable public URLs."""

    def __init__(self):
        self.published: List[tuple] = []
        self.fail_on: Dict[bytes, Exception] = {}

    async def publish(self, image: ProcessedImage, folder: str) -> str:
        if image.buffer in self.fail_on:
            raise self.fail_on[image.buffer]
        self.published.append((folder, image.file_name, image.mime_type))
        return f"https://storage.test/{folder}/{len(self.published)}-{image.file_name}"


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def make_image_bytes():
    """Factory producing encoded images generated with Pillow."""
    def _make(size=(64, 48), fmt="PNG", mode="RGB", color=(200, 30, 30)):
        if mode == "RGBA" and len(color) == 3:
            color = (*color, 128)
        image = Image.new(mode, size, color)
        output = io.BytesIO()
        image.save(output, fmt)
        return output.getvalue()
    return _make


@pytest.fixture
def wilderness_html():
    return (
        '<html><head><meta property="og:title" content="Wilderness 101">'
        '<meta property="og:image" content="/img/a.jpg"></head>'
        '<body><img src="/img/b.jpg"><img src="https://cdn.x.com/c.jpg"></body></html>'
    )

"""
HTTP fetcher for course pages and their images.
Wraps a shared aiohttp session with explicit timeouts and body size caps.
"""

import asyncio
from typing import Optional

import aiohttp
import structlog

from .exceptions import ImageFetchError, UpstreamFetchError
from .models import FetchedImage

logger = structlog.get_logger()

READ_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_PAGE_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_IMAGE_BYTES = 10 * 1024 * 1024


def _is_success(status: int) -> bool:
    return 200 <= status < 300


async def _read_limited(response: aiohttp.ClientResponse, limit: int) -> Optional[bytes]:
    """Read the body in chunks. Returns None as soon as it exceeds limit."""
    if response.content_length is not None and response.content_length > limit:
        return None

    chunks = []
    size = 0
    async for chunk in response.content.iter_chunked(READ_CHUNK_SIZE):
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def decode_body(body: bytes, charset: Optional[str]) -> str:
    """Decode page bytes; undecodable bytes and unknown charsets never fail."""
    try:
        return body.decode(charset or 'utf-8', errors='replace')
    except LookupError:
        return body.decode('utf-8', errors='replace')


class Fetcher:
    """Retrieves raw pages and image bytes from caller-supplied URLs."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        user_agent: str = "CourseImporter/1.0",
        page_timeout: float = 15.0,
        image_timeout: float = 15.0,
        connect_timeout: float = 10.0,
        max_redirects: int = 10,
        max_page_bytes: int = DEFAULT_MAX_PAGE_BYTES,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    ):
        self.session = session
        self.headers = {
            'User-Agent': user_agent,
            'Accept-Language': 'en-US,en;q=0.5',
        }
        self.page_timeout = aiohttp.ClientTimeout(total=page_timeout, connect=connect_timeout)
        self.image_timeout = aiohttp.ClientTimeout(total=image_timeout, connect=connect_timeout)
        self.max_redirects = max_redirects
        self.max_page_bytes = max_page_bytes
        self.max_image_bytes = max_image_bytes

    async def fetch_page(self, url: str) -> str:
        """
        Fetch page HTML.

        Bytes that do not match the declared charset are replaced, not rejected.

        Raises:
            UpstreamFetchError: non-2xx status, oversized body, transport error or timeout
        """
        headers = {
            **self.headers,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        }
        try:
            async with self.session.get(
                url,
                headers=headers,
                timeout=self.page_timeout,
                max_redirects=self.max_redirects
            ) as response:
                if not _is_success(response.status):
                    raise UpstreamFetchError(f"HTTP {response.status}")
                body = await _read_limited(response, self.max_page_bytes)
                if body is None:
                    raise UpstreamFetchError(f"Page larger than {self.max_page_bytes} bytes")
                html = decode_body(body, response.charset)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamFetchError(str(e) or type(e).__name__) from e

        logger.debug("page_fetched", url=url, length=len(html))
        return html

    async def fetch_image(self, url: str) -> FetchedImage:
        """
        Fetch raw image bytes.

        Raises:
            ImageFetchError: non-2xx status, oversized body, transport error or timeout
        """
        headers = {**self.headers, 'Accept': 'image/*,*/*;q=0.8'}
        try:
            async with self.session.get(
                url,
                headers=headers,
                timeout=self.image_timeout,
                max_redirects=self.max_redirects
            ) as response:
                if not _is_success(response.status):
                    raise ImageFetchError(f"HTTP {response.status}", url=url)
                content = await _read_limited(response, self.max_image_bytes)
                if content is None:
                    logger.warning("image_too_large", url=url[:200], limit=self.max_image_bytes)
                    raise ImageFetchError(f"Image larger than {self.max_image_bytes} bytes", url=url)
                content_type: Optional[str] = response.headers.get('Content-Type')
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ImageFetchError(str(e) or type(e).__name__, url=url) from e

        return FetchedImage(url=url, content=content, content_type=content_type, status=status)

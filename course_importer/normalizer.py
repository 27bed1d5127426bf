"""Resolution of candidate image URLs against the page they came from."""

from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urljoin, urlparse

from .exceptions import ImageNormalizeError

DEFAULT_EXTENSION = ".jpg"
DEFAULT_MIME_TYPE = "image/jpeg"


def _is_absolute_http(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def resolve_image_url(candidate: str, base_url: str) -> str:
    """
    Turn a possibly relative image URL into an absolute one.

    Raises:
        ImageNormalizeError: the candidate does not resolve to an http(s) URL
    """
    candidate = candidate.strip()
    if _is_absolute_http(candidate):
        return candidate

    try:
        resolved = urljoin(base_url, candidate)
    except ValueError as e:
        raise ImageNormalizeError(f"Cannot resolve image URL: {e}", url=candidate) from e

    if not _is_absolute_http(resolved):
        raise ImageNormalizeError(f"Not an http(s) URL: {resolved[:100]}", url=candidate)
    return resolved


def guess_extension(url: str) -> str:
    """File extension of the URL path, query string excluded."""
    suffix = PurePosixPath(urlparse(url).path).suffix
    return suffix.lower() if suffix else DEFAULT_EXTENSION


def guess_mime_type(content_type: Optional[str]) -> str:
    """Media type from a Content-Type header, parameters stripped."""
    if not content_type:
        return DEFAULT_MIME_TYPE
    mime_type = content_type.split(';')[0].strip().lower()
    return mime_type or DEFAULT_MIME_TYPE

"""
Course page metadata extraction.
Pulls title, description and candidate images from page HTML with BeautifulSoup.
"""

from typing import List, Optional

from bs4 import BeautifulSoup

from .models import ExtractedMetadata

MAX_IMAGE_CANDIDATES = 5


def _meta_content(soup: BeautifulSoup, selector: str) -> Optional[str]:
    """Return the content attribute of the first matching meta tag, if non-empty."""
    tag = soup.select_one(selector)
    if tag is None:
        return None
    content = tag.get('content')
    return content or None


def extract_title(soup: BeautifulSoup) -> str:
    title = _meta_content(soup, 'meta[property="og:title"]')
    if not title and soup.title is not None:
        title = soup.title.get_text()
    return (title or "").strip()


def extract_description(soup: BeautifulSoup) -> str:
    description = (
        _meta_content(soup, 'meta[property="og:description"]')
        or _meta_content(soup, 'meta[name="description"]')
    )
    return (description or "").strip()


def extract_image_candidates(soup: BeautifulSoup, limit: int = MAX_IMAGE_CANDIDATES) -> List[str]:
    """
    Collect candidate image URLs in priority order.

    The og:image tag comes first, followed by <img> sources in document order.
    Empty and duplicate sources are skipped and the list never exceeds limit.
    """
    images: List[str] = []
    preferred = _meta_content(soup, 'meta[property="og:image"]')
    if preferred:
        images.append(preferred)

    for img in soup.find_all('img'):
        src = img.get('src')
        if src and src not in images and len(images) < limit:
            images.append(src)

    return images[:limit]


def extract_metadata(html: str, base_url: str) -> ExtractedMetadata:
    """Parse page HTML into ExtractedMetadata. Missing fields degrade to empty values."""
    soup = BeautifulSoup(html, 'html.parser')
    return ExtractedMetadata(
        title=extract_title(soup),
        description=extract_description(soup),
        image_candidates=extract_image_candidates(soup),
        base_url=base_url
    )

"""Data models for the course import service."""

from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .exceptions import InputError


# Pipeline data

@dataclass
class ExtractedMetadata:
    """Fields pulled from a course page."""
    title: str
    description: str
    image_candidates: List[str]
    base_url: str


@dataclass
class FetchedImage:
    """Raw image payload as returned by the remote server."""
    url: str
    content: bytes
    content_type: Optional[str] = None
    status: int = 200


@dataclass
class SourceImage:
    """Transcoder input."""
    name: str
    buffer: bytes
    size: int
    type: str


@dataclass
class ProcessedImage:
    """Transcoder output, discarded once uploaded."""
    buffer: bytes
    file_name: str
    mime_type: str
    size: int


@dataclass
class ImageOutcome:
    """Result of processing one candidate image."""
    candidate: str
    absolute_url: Optional[str] = None
    public_url: Optional[str] = None
    stage: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.public_url is not None

    @classmethod
    def succeeded(cls, candidate: str, absolute_url: str, public_url: str) -> "ImageOutcome":
        return cls(candidate=candidate, absolute_url=absolute_url, public_url=public_url)

    @classmethod
    def failed(
        cls,
        candidate: str,
        stage: str,
        error: str,
        absolute_url: Optional[str] = None
    ) -> "ImageOutcome":
        return cls(candidate=candidate, absolute_url=absolute_url, stage=stage, error=error)


@dataclass
class ImportResult:
    """Everything one import produced."""
    metadata: ExtractedMetadata
    outcomes: List[ImageOutcome] = field(default_factory=list)

    @property
    def published_urls(self) -> List[str]:
        return [o.public_url for o in self.outcomes if o.ok]

    @property
    def failures(self) -> List[ImageOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_draft(self) -> "CourseDraft":
        return CourseDraft(
            title=self.metadata.title,
            description=self.metadata.description,
            photo_url=self.published_urls
        )


# API models

def is_absolute_http_url(url: str) -> bool:
    """True for an http(s) URL with a host; path and query are not checked."""
    try:
        parsed = urlparse(url)
        parsed.port  # raises on a malformed port
    except ValueError:
        return False
    host = parsed.hostname
    if parsed.scheme not in ('http', 'https') or not host:
        return False
    return not any(c.isspace() for c in host)


class ImportRequest(BaseModel):
    """Request body of the scrape endpoint."""
    url: str

    @classmethod
    def from_payload(cls, payload: Any) -> "ImportRequest":
        """
        Validate a decoded JSON body.

        Raises:
            InputError: url missing, not a string or not an absolute http(s) URL
        """
        url = payload.get('url') if isinstance(payload, dict) else None
        if not url or not isinstance(url, str):
            raise InputError("Missing or invalid URL")
        if not is_absolute_http_url(url):
            raise InputError("Invalid URL format")
        return cls(url=url)


class CourseDraft(BaseModel):
    """Partial course record used to pre-fill the course form."""
    title: str
    description: str
    price: int = 0  # Not extracted
    duration: int = 0  # Not extracted
    difficulty: str = ""  # Not extracted
    location: str = ""  # Not extracted
    course_type: str = ""  # Not extracted
    photo_url: List[str] = []


class ErrorResponse(BaseModel):
    """Response model for errors."""
    error: str
    details: Optional[str] = None


class ChunkUploadResponse(BaseModel):
    """Response of the chunked photo upload endpoint."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str
    file_id: str
    chunk_index: int
    total_chunks: int
    original_name: str
    assembled: Optional[bool] = None
    public_url: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    service: str

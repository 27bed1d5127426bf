"""
Tests for request validation and response models.
"""

import pytest

from course_importer.exceptions import InputError
from course_importer.models import (
    ChunkUploadResponse,
    CourseDraft,
    ExtractedMetadata,
    ImageOutcome,
    ImportRequest,
    ImportResult,
)


class TestImportRequest:
    """Request body validation."""

    def test_valid_url(self):
        request = ImportRequest.from_payload({'url': "https://example.com/course?id=3"})
        assert request.url == "https://example.com/course?id=3"

    @pytest.mark.parametrize("payload", [None, {}, {'url': 5}, {'url': ""}, "https://example.com"])
    def test_missing_url(self, payload):
        with pytest.raises(InputError, match="Missing or invalid URL"):
            ImportRequest.from_payload(payload)

    @pytest.mark.parametrize("url", [
        "http://localhost:8000/course",
        "http://intranet/course",
        "https://my_school.example.com/course",
        "https://example.com/course?q=a b",
        "HTTPS://EXAMPLE.COM/Course",
    ])
    def test_any_absolute_http_url_accepted(self, url):
        assert ImportRequest.from_payload({'url': url}).url == url

    @pytest.mark.parametrize("url", [
        "not a url",
        "mailto:me@example.com",
        "https://",
        "http://exa mple.com",
        "example.com/course",
        "ftp://example.com/course",
        "http://example.com:notaport/",
        "http://[::1",
    ])
    def test_invalid_format(self, url):
        with pytest.raises(InputError, match="Invalid URL format"):
            ImportRequest.from_payload({'url': url})


class TestImportResult:
    """Outcome collection."""

    def _result(self):
        metadata = ExtractedMetadata(
            title="Canoe Trip",
            description="Three days on the river",
            image_candidates=["/a.jpg", "/b.jpg", "/c.jpg"],
            base_url="https://example.com"
        )
        return ImportResult(metadata=metadata, outcomes=[
            ImageOutcome.succeeded("/a.jpg", "https://example.com/a.jpg", "https://cdn/a.webp"),
            ImageOutcome.failed("/b.jpg", "fetch", "HTTP 404", "https://example.com/b.jpg"),
            ImageOutcome.succeeded("/c.jpg", "https://example.com/c.jpg", "https://cdn/c.webp"),
        ])

    def test_published_urls_keep_order(self):
        assert self._result().published_urls == ["https://cdn/a.webp", "https://cdn/c.webp"]

    def test_failures(self):
        failures = self._result().failures
        assert len(failures) == 1
        assert failures[0].stage == "fetch"
        assert not failures[0].ok

    def test_to_draft(self):
        draft = self._result().to_draft()

        assert draft == CourseDraft(
            title="Canoe Trip",
            description="Three days on the river",
            photo_url=["https://cdn/a.webp", "https://cdn/c.webp"]
        )
        assert draft.price == 0
        assert draft.course_type == ""


class TestChunkUploadResponse:
    def test_camel_case_serialization(self):
        response = ChunkUploadResponse(
            status="chunk_received",
            file_id="f1",
            chunk_index=0,
            total_chunks=3,
            original_name="a.png"
        )

        assert response.model_dump(by_alias=True, exclude_none=True) == {
            'status': "chunk_received",
            'fileId': "f1",
            'chunkIndex': 0,
            'totalChunks': 3,
            'originalName': "a.png",
        }

"""
Course import pipeline.

Fetch page -> extract metadata -> for each candidate image:
resolve -> fetch -> transcode -> publish. Candidates are processed one at a
time and every candidate yields an ImageOutcome, so a failed image never
aborts the import.
"""

import asyncio
import time
from typing import List, Optional

import structlog

from .exceptions import ImageImportError
from .extractor import extract_metadata
from .models import ExtractedMetadata, ImageOutcome, ImportResult, SourceImage
from .normalizer import guess_extension, guess_mime_type, resolve_image_url
from .storage import Publisher
from .transcoder import Transcoder

logger = structlog.get_logger()

DEFAULT_IMPORT_FOLDER = "imports"


class CourseImporter:
    """Imports a course draft from a web page."""

    def __init__(
        self,
        fetcher,
        transcoder: Transcoder,
        publisher: Publisher,
        folder: str = DEFAULT_IMPORT_FOLDER,
        budget_seconds: float = 60.0,
        target_format: Optional[str] = None
    ):
        self.fetcher = fetcher
        self.transcoder = transcoder
        self.publisher = publisher
        self.folder = folder
        self.budget_seconds = budget_seconds
        self.target_format = target_format

    async def import_course(self, url: str) -> ImportResult:
        """
        Run the full import for one page.

        Raises:
            UpstreamFetchError: the page itself could not be fetched
        """
        start_time = time.time()
        logger.info("course_import_started", url=url[:100])

        html = await self.fetcher.fetch_page(url)
        loop = asyncio.get_running_loop()
        metadata = await loop.run_in_executor(None, extract_metadata, html, url)
        logger.info(
            "course_metadata_extracted",
            title=metadata.title[:80],
            candidates=len(metadata.image_candidates)
        )

        outcomes = await self.process_images(metadata)
        result = ImportResult(metadata=metadata, outcomes=outcomes)

        logger.info(
            "course_import_completed",
            url=url[:100],
            published=len(result.published_urls),
            failed=len(result.failures),
            processing_time=round(time.time() - start_time, 3)
        )
        return result

    async def process_images(self, metadata: ExtractedMetadata) -> List[ImageOutcome]:
        """Process candidates sequentially within the wall-clock budget."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.budget_seconds
        outcomes: List[ImageOutcome] = []

        for candidate in metadata.image_candidates:
            remaining = deadline - loop.time()
            if remaining <= 0:
                outcome = ImageOutcome.failed(candidate, "timeout", "Import time budget exhausted")
            else:
                try:
                    outcome = await asyncio.wait_for(
                        self.process_candidate(candidate, metadata.base_url),
                        timeout=remaining
                    )
                except asyncio.TimeoutError:
                    outcome = ImageOutcome.failed(candidate, "timeout", "Import time budget exhausted")

            if not outcome.ok:
                logger.warning(
                    "image_import_skipped",
                    candidate=candidate[:200],
                    stage=outcome.stage,
                    error=outcome.error
                )
            outcomes.append(outcome)

        return outcomes

    async def process_candidate(self, candidate: str, base_url: str) -> ImageOutcome:
        """Resolve, fetch, transcode and publish a single candidate image."""
        stage = "normalize"
        absolute_url = None
        try:
            absolute_url = resolve_image_url(candidate, base_url)

            stage = "fetch"
            image = await self.fetcher.fetch_image(absolute_url)

            stage = "process"
            source = SourceImage(
                name=f"imported{guess_extension(absolute_url)}",
                buffer=image.content,
                size=len(image.content),
                type=guess_mime_type(image.content_type)
            )
            processed = await self.transcoder.transcode(source, self.target_format)

            stage = "publish"
            public_url = await self.publisher.publish(processed, self.folder)
        except ImageImportError as e:
            return ImageOutcome.failed(candidate, e.stage, str(e), absolute_url)
        except Exception as e:
            # A collaborator bug still only costs this one image.
            logger.exception("image_import_error", candidate=candidate[:200], stage=stage)
            return ImageOutcome.failed(candidate, stage, str(e) or type(e).__name__, absolute_url)

        return ImageOutcome.succeeded(candidate, absolute_url, public_url)

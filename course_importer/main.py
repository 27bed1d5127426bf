"""
Course Import Service - FastAPI application.
Scrapes course pages into course drafts and handles course photo uploads.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
import httpx
import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from .chunks import ChunkStore, parse_chunk_position, receive_chunk
from .config import settings
from .exceptions import ImageProcessError, InputError, StorageError, UpstreamFetchError
from .fetcher import Fetcher
from .models import ChunkUploadResponse, CourseDraft, ErrorResponse, HealthResponse, ImportRequest
from .pipeline import CourseImporter
from .storage import StorageClient, StoragePublisher
from .transcoder import ImageProcessingOptions, ImageTranscoder

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.LOG_LEVEL.upper())
    )
)

logger = structlog.get_logger()


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager. Shared clients live for the whole process."""
    logger.info("course_importer_starting", storage_configured=bool(settings.SUPABASE_URL))

    session = aiohttp.ClientSession()
    storage = StorageClient(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        httpx.AsyncClient(timeout=settings.STORAGE_TIMEOUT)
    )
    fetcher = Fetcher(
        session,
        user_agent=settings.USER_AGENT,
        page_timeout=settings.PAGE_FETCH_TIMEOUT,
        image_timeout=settings.IMAGE_FETCH_TIMEOUT,
        connect_timeout=settings.CONNECT_TIMEOUT,
        max_redirects=settings.MAX_REDIRECTS,
        max_page_bytes=settings.MAX_PAGE_BYTES,
        max_image_bytes=settings.MAX_IMAGE_BYTES
    )
    transcoder = ImageTranscoder(ImageProcessingOptions(
        max_width=settings.IMAGE_MAX_WIDTH,
        max_height=settings.IMAGE_MAX_HEIGHT,
        quality=settings.IMAGE_QUALITY,
        format=settings.IMAGE_FORMAT
    ))

    app.state.storage = storage
    app.state.transcoder = transcoder
    app.state.chunk_store = ChunkStore(settings.UPLOAD_TMP_DIR)
    app.state.importer = CourseImporter(
        fetcher,
        transcoder,
        StoragePublisher(storage, bucket=settings.COURSE_PHOTOS_BUCKET),
        folder=settings.IMPORT_FOLDER,
        budget_seconds=settings.IMPORT_BUDGET_SECONDS
    )

    yield

    logger.info("course_importer_stopping")
    await session.close()
    await storage.close()


app = FastAPI(
    title="Course Import Service",
    description="Course page scraping and course photo uploads",
    version="1.0.0",
    lifespan=lifespan
)


# Dependencies

def get_importer(request: Request) -> CourseImporter:
    return request.app.state.importer


def get_storage(request: Request) -> StorageClient:
    return request.app.state.storage


def get_transcoder(request: Request) -> ImageTranscoder:
    return request.app.state.transcoder


def get_chunk_store(request: Request) -> ChunkStore:
    return request.app.state.chunk_store


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", service="course-importer")


@app.post(
    "/scrape-course",
    response_model=CourseDraft,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def scrape_course(request: Request, importer: CourseImporter = Depends(get_importer)):
    """
    Build a course draft from a web page.

    Image failures never change the status: the draft simply carries fewer photos.
    """
    try:
        payload = await request.json()
    except ValueError:
        return error_response(400, "Invalid JSON body")

    try:
        import_request = ImportRequest.from_payload(payload)
        result = await importer.import_course(import_request.url)
    except InputError as e:
        return error_response(400, str(e))
    except UpstreamFetchError as e:
        logger.warning("page_fetch_failed", error=str(e))
        return error_response(400, "Failed to fetch the page", str(e))
    except Exception as e:
        logger.error("scrape_course_error", error=str(e), exc_info=True)
        return error_response(500, "Server error", str(e))

    return result.to_draft()


@app.post(
    "/upload-chunk",
    response_model=ChunkUploadResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def upload_chunk(
    request: Request,
    x_file_id: Optional[str] = Header(None),
    x_chunk_index: Optional[str] = Header(None),
    x_total_chunks: Optional[str] = Header(None),
    x_original_name: Optional[str] = Header(None),
    x_course_id: Optional[str] = Header(None),
    x_file_type: Optional[str] = Header(None),
    store: ChunkStore = Depends(get_chunk_store),
    transcoder: ImageTranscoder = Depends(get_transcoder),
    storage: StorageClient = Depends(get_storage)
):
    """Receive one chunk of a course photo; the last chunk triggers the upload."""
    if not all([x_file_id, x_chunk_index, x_total_chunks, x_original_name, x_course_id]):
        return error_response(400, "Missing required headers")

    try:
        chunk_index, total_chunks = parse_chunk_position(x_chunk_index, x_total_chunks)
        data = await request.body()
        return await receive_chunk(
            store,
            transcoder,
            storage,
            data,
            file_id=x_file_id,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            original_name=x_original_name,
            course_id=x_course_id,
            file_type=x_file_type,
            bucket=settings.COURSE_PHOTOS_BUCKET
        )
    except InputError as e:
        return error_response(400, str(e))
    except (ImageProcessError, StorageError, httpx.HTTPError) as e:
        logger.error("chunk_upload_failed", file_id=x_file_id, error=str(e))
        return error_response(500, "Internal server error", str(e))
    except Exception as e:
        logger.error("chunk_upload_error", file_id=x_file_id, error=str(e), exc_info=True)
        return error_response(500, "Internal server error", str(e))


@app.get("/storage/health")
async def storage_health(storage: StorageClient = Depends(get_storage)):
    """Check that the course photos bucket exists and is readable."""
    bucket_name = settings.COURSE_PHOTOS_BUCKET

    try:
        buckets = await storage.list_buckets()
    except (StorageError, httpx.HTTPError) as e:
        logger.error("bucket_list_failed", error=str(e))
        return error_response(500, "Failed to list buckets", str(e))

    bucket = next((b for b in buckets if b.get('name') == bucket_name), None)
    if bucket is None:
        return JSONResponse(status_code=404, content={
            'error': f"{bucket_name} bucket not found",
            'availableBuckets': [b.get('name') for b in buckets]
        })

    try:
        files = await storage.list(bucket_name, prefix="", limit=1)
    except (StorageError, httpx.HTTPError) as e:
        logger.error("bucket_files_list_failed", bucket=bucket_name, error=str(e))
        return error_response(500, "Failed to list files in bucket", str(e))

    return {
        'success': True,
        'bucket': {
            'name': bucket.get('name'),
            'id': bucket.get('id'),
            'public': bucket.get('public'),
            'fileCount': len(files)
        },
        'availableBuckets': [
            {'name': b.get('name'), 'public': b.get('public')} for b in buckets
        ]
    }


def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.SERVICE_PORT)


if __name__ == "__main__":
    main()

"""
Chunked photo uploads.
Chunks are written to a temp directory until the file is complete, then the
assembled image is transcoded and uploaded to the course folder.
"""

import re
import shutil
from pathlib import Path, PurePosixPath
from typing import Optional

import structlog

from .exceptions import ImageProcessError, InputError
from .models import ChunkUploadResponse, SourceImage
from .storage import COURSE_PHOTOS_BUCKET, StorageClient, upload_course_photo
from .transcoder import Transcoder

logger = structlog.get_logger()

EXTENSION_MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.bmp': 'image/bmp',
    '.svg': 'image/svg+xml',
}

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_path_component(value: str) -> str:
    """Reduce a client-supplied value to a single safe file name."""
    name = PurePosixPath(value.replace('\\', '/')).name
    name = _UNSAFE_CHARS.sub('_', name).lstrip('.')
    if not name:
        raise InputError(f"Invalid name: {value!r}")
    return name


def get_mime_type_from_file_name(file_name: str) -> str:
    return EXTENSION_MIME_TYPES.get(PurePosixPath(file_name).suffix.lower(), 'image/*')


class ChunkStore:
    """Temp storage for partially uploaded files, one directory per file id."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _file_dir(self, file_id: str) -> Path:
        return self.root / safe_path_component(file_id)

    def save_chunk(self, file_id: str, chunk_index: int, data: bytes) -> int:
        """Store one chunk and return how many chunks have arrived so far."""
        file_dir = self._file_dir(file_id)
        file_dir.mkdir(parents=True, exist_ok=True)
        (file_dir / f"{chunk_index}.part").write_bytes(data)
        return self.received_chunks(file_id)

    def received_chunks(self, file_id: str) -> int:
        file_dir = self._file_dir(file_id)
        if not file_dir.exists():
            return 0
        return len(list(file_dir.glob("*.part")))

    def assemble(self, file_id: str, total_chunks: int) -> bytes:
        file_dir = self._file_dir(file_id)
        return b"".join(
            (file_dir / f"{i}.part").read_bytes() for i in range(total_chunks)
        )

    def cleanup(self, file_id: str) -> None:
        shutil.rmtree(self._file_dir(file_id), ignore_errors=True)


def parse_chunk_position(chunk_index: str, total_chunks: str):
    """
    Parse and check the chunk index headers.

    Raises:
        InputError: non-integer values or an index outside [0, total)
    """
    try:
        index = int(chunk_index)
        total = int(total_chunks)
    except ValueError:
        raise InputError("Invalid chunk index headers") from None
    if total < 1 or not 0 <= index < total:
        raise InputError("Chunk index out of range")
    return index, total


async def receive_chunk(
    store: ChunkStore,
    transcoder: Transcoder,
    storage: StorageClient,
    data: bytes,
    file_id: str,
    chunk_index: int,
    total_chunks: int,
    original_name: str,
    course_id: str,
    file_type: Optional[str] = None,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> ChunkUploadResponse:
    """
    Store a chunk and, once all chunks are present, publish the assembled photo.

    Raises:
        ImageProcessError: the assembled image could not be transcoded
        StorageError: the upload failed
    """
    file_name = safe_path_component(original_name)
    folder = safe_path_component(course_id)
    received = store.save_chunk(file_id, chunk_index, data)
    is_complete = received == total_chunks

    public_url = None
    if is_complete:
        buffer = store.assemble(file_id, total_chunks)
        mime_type = file_type or get_mime_type_from_file_name(original_name)
        logger.info("assembling_upload", file_id=file_id, name=original_name, mime_type=mime_type)

        try:
            processed = await transcoder.transcode(
                SourceImage(name=file_name, buffer=buffer, size=len(buffer), type=mime_type),
                'webp'
            )
            public_url = await upload_course_photo(
                storage,
                processed.buffer,
                processed.file_name,
                processed.mime_type,
                folder,
                bucket=bucket
            )
        except ImageProcessError as e:
            raise ImageProcessError(f"Image processing failed: {e}") from e
        finally:
            store.cleanup(file_id)

        logger.info("upload_published", file_id=file_id, public_url=public_url)

    return ChunkUploadResponse(
        status='file_complete' if is_complete else 'chunk_received',
        file_id=file_id,
        chunk_index=chunk_index,
        total_chunks=total_chunks,
        original_name=original_name,
        assembled=True if is_complete else None,
        public_url=public_url
    )

"""
Supabase Storage client and course photo helpers.
Talks to the Storage REST API directly over httpx.
"""

import re
import time
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote, unquote, urlparse

import httpx
import structlog

from .exceptions import ImagePublishError, StorageError
from .models import ProcessedImage

logger = structlog.get_logger()

COURSE_PHOTOS_BUCKET = "course-photos"
SCHOOL_PHOTOS_BUCKET = "school-photos"
PLACEHOLDER_NAME = ".keep"

_URL_EXTENSION = re.compile(r"\.[a-zA-Z0-9]+$")


class StorageClient:
    """Minimal client for the Supabase Storage REST API."""

    def __init__(self, base_url: str, service_key: str, http_client: httpx.AsyncClient):
        self.base_url = base_url.rstrip('/')
        self.service_key = service_key
        self.client = http_client

    @property
    def _api(self) -> str:
        return f"{self.base_url}/storage/v1"

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            'Authorization': f"Bearer {self.service_key}",
            'apikey': self.service_key,
        }
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        try:
            payload = response.json()
        except ValueError:
            payload = None
        message = payload.get('message') if isinstance(payload, dict) else None
        message = message or response.text
        raise StorageError(f"{action} failed ({response.status_code}): {message}", response.status_code)

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        cache_control: str = "3600",
        upsert: bool = False
    ) -> None:
        response = await self.client.post(
            f"{self._api}/object/{bucket}/{quote(path)}",
            content=data,
            headers=self._headers({
                'Content-Type': content_type,
                'cache-control': f"max-age={cache_control}",
                'x-upsert': 'true' if upsert else 'false',
            })
        )
        self._check(response, "Upload")

    async def remove(self, bucket: str, paths: List[str]) -> List[Dict[str, Any]]:
        response = await self.client.request(
            "DELETE",
            f"{self._api}/object/{bucket}",
            json={'prefixes': paths},
            headers=self._headers()
        )
        self._check(response, "Remove")
        return response.json()

    async def list(
        self,
        bucket: str,
        prefix: str = "",
        limit: int = 100,
        offset: int = 0,
        search: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        body: Dict[str, Any] = {
            'prefix': prefix,
            'limit': limit,
            'offset': offset,
            'sortBy': {'column': 'name', 'order': 'asc'},
        }
        if search:
            body['search'] = search
        response = await self.client.post(
            f"{self._api}/object/list/{bucket}",
            json=body,
            headers=self._headers()
        )
        self._check(response, "List")
        return response.json()

    async def list_buckets(self) -> List[Dict[str, Any]]:
        response = await self.client.get(f"{self._api}/bucket", headers=self._headers())
        self._check(response, "List buckets")
        return response.json()

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._api}/object/public/{bucket}/{quote(path)}"

    async def close(self):
        await self.client.aclose()


class Publisher(Protocol):
    """Persists processed image bytes and returns a public URL."""

    async def publish(self, image: ProcessedImage, folder: str) -> str:
        ...


async def upload_course_photo(
    client: StorageClient,
    data: bytes,
    file_name: str,
    mime_type: str,
    course_id: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> str:
    """Upload a photo under the course folder and return its public URL."""
    full_path = f"{course_id}/{int(time.time() * 1000)}-{file_name}"
    logger.info(
        "uploading_course_photo",
        bucket=bucket,
        path=full_path,
        mime_type=mime_type,
        size=len(data)
    )

    try:
        await client.upload(bucket, full_path, data, mime_type)
    except StorageError as e:
        logger.error("course_photo_upload_failed", path=full_path, error=str(e))
        raise StorageError(f"Failed to upload photo: {e}", e.status_code) from e

    public_url = client.public_url(bucket, full_path)
    if not public_url:
        raise StorageError("Could not get public URL for uploaded file.")

    logger.info("course_photo_uploaded", path=full_path, public_url=public_url)
    return public_url


def get_course_photo_url(client: StorageClient, file_path: str, bucket: str = COURSE_PHOTOS_BUCKET) -> str:
    return client.public_url(bucket, file_path)


def _path_from_public_url(public_url: str, bucket: str) -> Optional[str]:
    parts = urlparse(public_url).path.split(f"/{bucket}/", 1)
    if len(parts) < 2 or not parts[1]:
        return None
    return unquote(parts[1])


async def delete_course_photo(
    client: StorageClient,
    public_url: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> None:
    """Delete a photo by its public URL. Folder placeholders are never deleted."""
    file_path = _path_from_public_url(public_url, bucket)
    if not file_path:
        logger.error("photo_path_not_found", public_url=public_url)
        return

    if file_path.endswith(f"/{PLACEHOLDER_NAME}"):
        logger.warning("placeholder_delete_skipped", path=file_path)
        return

    await client.remove(bucket, [file_path])


async def list_course_photos(
    client: StorageClient,
    course_id: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> List[Dict[str, Any]]:
    return await client.list(bucket, prefix="", search=course_id)


async def upload_school_logo(
    client: StorageClient,
    data: bytes,
    file_name: str,
    mime_type: str,
    school_id: str,
    bucket: str = SCHOOL_PHOTOS_BUCKET
) -> str:
    full_path = f"{school_id}/{int(time.time() * 1000)}-{file_name}"
    try:
        await client.upload(bucket, full_path, data, mime_type)
    except StorageError as e:
        logger.error("school_logo_upload_failed", path=full_path, error=str(e))
        raise StorageError("Failed to upload school logo.", e.status_code) from e
    return client.public_url(bucket, full_path)


async def copy_course_photo_to_new_course(
    client: StorageClient,
    fetcher,
    image_url: str,
    new_course_id: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> str:
    """
    Copy an image from a public URL into another course folder.

    Args:
        client: Storage client
        fetcher: Fetcher used to download the source image
        image_url: Public URL of the image to copy
        new_course_id: Target course folder

    Returns:
        Public URL of the copy
    """
    image = await fetcher.fetch_image(image_url)

    match = _URL_EXTENSION.search(urlparse(image_url).path)
    extension = match.group(0) if match else ".jpg"
    file_name = f"copy-{int(time.time() * 1000)}{extension}"

    return await upload_course_photo(
        client,
        image.content,
        file_name,
        image.content_type or "image/jpeg",
        new_course_id,
        bucket=bucket
    )


async def ensure_course_folder_exists(
    client: StorageClient,
    course_id: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> None:
    """Write a placeholder so the folder survives removal of all photos."""
    placeholder_path = f"{course_id}/{PLACEHOLDER_NAME}"
    try:
        await client.upload(
            bucket,
            placeholder_path,
            b"Course folder preserved",
            "text/plain",
            upsert=True
        )
        logger.info("course_placeholder_created", course_id=course_id)
    except (StorageError, httpx.HTTPError) as e:
        logger.warning("course_placeholder_failed", course_id=course_id, error=str(e))


async def course_folder_exists(
    client: StorageClient,
    course_id: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> bool:
    try:
        files = await client.list(bucket, prefix=course_id, limit=1)
    except (StorageError, httpx.HTTPError) as e:
        logger.warning("course_folder_check_failed", course_id=course_id, error=str(e))
        return False
    return len(files) > 0


async def delete_course_folder(
    client: StorageClient,
    course_id: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> None:
    """Remove every file in a course folder. Failures are logged."""
    try:
        files = await client.list(bucket, prefix=course_id)
        if not files:
            logger.info("course_folder_empty", course_id=course_id)
            return

        file_paths = [f"{course_id}/{f['name']}" for f in files]
        await client.remove(bucket, file_paths)
        logger.info("course_folder_deleted", course_id=course_id, files=len(file_paths))
    except (StorageError, httpx.HTTPError) as e:
        logger.error("course_folder_delete_failed", course_id=course_id, error=str(e))


async def recover_course_folder(
    client: StorageClient,
    course_id: str,
    bucket: str = COURSE_PHOTOS_BUCKET
) -> None:
    if not await course_folder_exists(client, course_id, bucket):
        logger.info("recovering_course_folder", course_id=course_id)
        await ensure_course_folder_exists(client, course_id, bucket)


class StoragePublisher:
    """Publisher that uploads into the course photos bucket."""

    def __init__(self, client: StorageClient, bucket: str = COURSE_PHOTOS_BUCKET):
        self.client = client
        self.bucket = bucket

    async def publish(self, image: ProcessedImage, folder: str) -> str:
        try:
            return await upload_course_photo(
                self.client,
                image.buffer,
                image.file_name,
                image.mime_type,
                folder,
                bucket=self.bucket
            )
        except (StorageError, httpx.HTTPError) as e:
            raise ImagePublishError(str(e) or type(e).__name__) from e

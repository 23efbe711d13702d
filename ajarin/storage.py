"""Client for the external file storage service.

Only two calls are needed: store bytes and get back a descriptor, and delete
by id. The engines keep nothing but the returned descriptor
(``{id, url, name, size, mime_type}``).
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterable, Optional

import httpx
from fastapi import Depends

from ajarin.config import Settings
from ajarin.errors import StorageError, ValidationError
from ajarin.user_service.security import get_settings

logger = logging.getLogger("storage")

MAX_FILE_SIZE = 50 * 1024 * 1024
MAX_FILES_PER_SUBMISSION = 10
ALLOWED_SUBMISSION_EXTENSIONS = {"pdf", "jpg", "jpeg", "png", "gif", "doc", "docx", "txt"}


@dataclass
class Upload:
    data: bytes
    filename: str
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


class FileStorage:
    def __init__(self, base_url: str, api_key: str = "", timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    async def store(self, data: bytes, filename: str, content_type: Optional[str], folder: str) -> dict:
        files = {"file": (filename, data, content_type or "application/octet-stream")}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                res = await client.post(
                    f"{self.base_url}/files",
                    headers=self._headers(),
                    data={"folder": folder},
                    files=files,
                )
        except httpx.RequestError as e:
            logger.error(f"Storage unreachable while uploading {filename}: {e}")
            raise StorageError(f"Failed to upload file {filename}")

        if res.status_code >= 300:
            logger.error(f"Storage rejected upload of {filename}: {res.status_code}")
            raise StorageError(f"Failed to upload file {filename}")

        body = res.json()
        return {
            "id": body["id"],
            "url": body["url"],
            "name": filename,
            "size": len(data),
            "mime_type": content_type,
        }

    async def store_upload(self, upload: Upload, folder: str) -> dict:
        return await self.store(upload.data, upload.filename, upload.content_type, folder)

    async def delete(self, file_id: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                res = await client.delete(f"{self.base_url}/files/{file_id}", headers=self._headers())
        except httpx.RequestError as e:
            logger.error(f"Storage unreachable while deleting {file_id}: {e}")
            raise StorageError(f"Failed to delete file {file_id}")

        # Already gone counts as deleted
        if res.status_code >= 300 and res.status_code != 404:
            logger.error(f"Storage rejected delete of {file_id}: {res.status_code}")
            raise StorageError(f"Failed to delete file {file_id}")


def get_storage(settings: Settings = Depends(get_settings)) -> FileStorage:
    return FileStorage(settings.storage_url, settings.storage_api_key, settings.storage_timeout_seconds)


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def validate_submission_files(uploads: Iterable[Upload]):
    uploads = list(uploads)
    if len(uploads) > MAX_FILES_PER_SUBMISSION:
        raise ValidationError(f"At most {MAX_FILES_PER_SUBMISSION} files can be submitted")
    for upload in uploads:
        if upload.size > MAX_FILE_SIZE:
            raise ValidationError(f"File {upload.filename} size cannot exceed 50MB")
        if file_extension(upload.filename) not in ALLOWED_SUBMISSION_EXTENSIONS:
            raise ValidationError(f"File {upload.filename}: only PDF, image and document files are allowed")

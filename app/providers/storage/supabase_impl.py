"""
Supabase Storage Provider implementation.

Objects live in a single bucket (``SUPABASE_STORAGE_BUCKET``) and are
served through its public URL.
"""
from __future__ import annotations

import posixpath
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from storage3.utils import StorageException

from ...config import get_logger
from ...exceptions import StorageError
from ...utils import parse_data_url
from ..context import ExecutionContext
from .interface import FileSource, StorageProviderInterface, UploadResult, read_file_source

logger = get_logger("storage.supabase")


@contextmanager
def _storage_errors(operation: str, path: str) -> Iterator[None]:
    try:
        yield
    except StorageException as e:
        code = getattr(e, "code", None)
        message = getattr(e, "message", None) or str(e)
        logger.warning("Supabase storage %s failed | path=%s | error=%s", operation, path, message)
        raise StorageError(
            f"Supabase storage {operation} failed for {path}: {message}",
            error_code=str(code).upper() if code else "STORAGE_ERROR",
        ) from e


class SupabaseStorageProvider(StorageProviderInterface):
    """Supabase Storage adapter bound to one bucket."""

    def __init__(self, client: Any, context: ExecutionContext, bucket: str = "uploads") -> None:
        super().__init__(context)
        self._client = client
        self.bucket = bucket

    def _bucket(self) -> Any:
        return self._client.storage.from_(self.bucket)

    async def upload_from_data_url(self, path: str, data_url: str) -> UploadResult:
        try:
            decoded = parse_data_url(data_url)
        except ValueError as e:
            raise StorageError(f"Cannot upload {path}: {e}", status_code=400, error_code="INVALID_DATA_URL") from e
        return await self._upload(path, decoded.content, decoded.content_type)

    async def upload_file(
        self,
        path: str,
        file: FileSource,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        content, content_type = read_file_source(path, file, content_type)
        return await self._upload(path, content, content_type)

    async def _upload(self, path: str, content: bytes, content_type: str) -> UploadResult:
        with _storage_errors("upload", path):
            await self._bucket().upload(
                path,
                content,
                {"content-type": content_type, "upsert": "true"},
            )
        logger.info("Uploaded %s (%d bytes, %s)", path, len(content), content_type)
        return UploadResult(url=await self.get_download_url(path), path=path)

    async def get_download_url(self, path: str) -> str:
        return await self._bucket().get_public_url(path)

    async def delete_file(self, path: str) -> None:
        with _storage_errors("delete", path):
            await self._bucket().remove([path])

    async def file_exists(self, path: str) -> bool:
        folder, name = posixpath.split(path)
        with _storage_errors("list", path):
            entries = await self._bucket().list(folder or None, {"search": name, "limit": 100})
        return any(entry.get("name") == name for entry in entries or [])

    def get_storage_instance(self) -> Any:
        return self._client.storage

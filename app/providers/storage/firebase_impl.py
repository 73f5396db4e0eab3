"""
Firebase Storage Provider implementation.

Uses the Firebase Storage REST API (the one the web SDK wraps) over the
client session's aiohttp connection, authenticated with the signed-in
user's ID token so storage security rules apply.
"""
from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from ...config import get_logger
from ...exceptions import AuthError, StorageError
from ...utils import parse_data_url
from ..auth.firebase_impl import FirebaseClientSession
from ..context import ExecutionContext
from .interface import FileSource, StorageProviderInterface, UploadResult, read_file_source

logger = get_logger("storage.firebase")

STORAGE_URL = "https://firebasestorage.googleapis.com/v0/b"


def download_url(bucket: str, path: str, token: str) -> str:
    """Tokenized, long-lived download URL for an object."""
    return f"{STORAGE_URL}/{bucket}/o/{quote(path, safe='')}?alt=media&token={token}"


class FirebaseStorageProvider(StorageProviderInterface):
    """Firebase Storage adapter bound to one bucket."""

    def __init__(self, session: FirebaseClientSession, bucket: str, context: ExecutionContext) -> None:
        super().__init__(context)
        self._session = session
        self.bucket = bucket

    def _object_url(self, path: str) -> str:
        return f"{STORAGE_URL}/{self.bucket}/o/{quote(path, safe='')}"

    async def _headers(self) -> dict[str, str]:
        if self._session.current_user is None:
            return {}
        try:
            token = await self._session.get_id_token()
        except AuthError as e:
            raise StorageError(f"Cannot authorize storage request: {e.message}", error_code=e.error_code) from e
        return {"Authorization": f"Firebase {token}"}

    async def _request(self, method: str, url: str, operation: str, path: str,
                       allow_missing: bool = False, **kwargs: Any) -> Optional[dict[str, Any]]:
        headers = {**kwargs.pop("headers", {}), **await self._headers()}
        try:
            async with self._session.http.request(method, url, headers=headers, **kwargs) as response:
                if response.status == 404 and allow_missing:
                    return None
                body = await response.json(content_type=None) if response.content_length != 0 else None
                if response.status >= 400:
                    error = (body or {}).get("error", {}) if isinstance(body, dict) else {}
                    message = error.get("message") or response.reason or "unknown error"
                    logger.warning("Firebase storage %s failed | path=%s | status=%s", operation, path, response.status)
                    raise StorageError(
                        f"Firebase storage {operation} failed for {path}: {message}",
                        status_code=404 if response.status == 404 else None,
                        error_code="OBJECT_NOT_FOUND" if response.status == 404 else f"HTTP_{response.status}",
                    )
                return body or {}
        except aiohttp.ClientError as e:
            raise StorageError(f"Firebase storage {operation} failed for {path}: {e}", error_code="NETWORK_ERROR") from e

    def _url_from_metadata(self, path: str, metadata: dict[str, Any]) -> str:
        tokens = metadata.get("downloadTokens")
        if not tokens:
            raise StorageError(f"No download token for {path}", error_code="NO_DOWNLOAD_TOKEN")
        return download_url(self.bucket, path, tokens.split(",")[0])

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
        metadata = await self._request(
            "POST",
            f"{STORAGE_URL}/{self.bucket}/o",
            "upload",
            path,
            params={"name": path},
            data=content,
            headers={"Content-Type": content_type},
        )
        logger.info("Uploaded %s (%d bytes, %s)", path, len(content), content_type)
        return UploadResult(url=self._url_from_metadata(path, metadata), path=path)

    async def get_download_url(self, path: str) -> str:
        metadata = await self._request("GET", self._object_url(path), "get_download_url", path)
        return self._url_from_metadata(path, metadata)

    async def delete_file(self, path: str) -> None:
        result = await self._request("DELETE", self._object_url(path), "delete", path, allow_missing=True)
        if result is None:
            logger.debug("Delete of missing object ignored | %s", path)

    async def file_exists(self, path: str) -> bool:
        metadata = await self._request("GET", self._object_url(path), "metadata", path, allow_missing=True)
        return metadata is not None

    def get_storage_instance(self) -> Any:
        return self._session.http

"""
Abstract interface for object storage providers.
"""
from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Optional, Union

from app.exceptions import StorageError

from ..context import ExecutionContext


FileSource = Union[bytes, bytearray, IO[bytes], Path]


@dataclass
class UploadResult:
    """Location of an uploaded object."""
    url: str
    path: str


def read_file_source(path: str, file: FileSource, content_type: Optional[str]) -> tuple[bytes, str]:
    """
    Normalize an upload source to ``(bytes, content_type)``.

    The content type falls back to a guess from the source file name,
    then the destination path, then ``application/octet-stream``.
    """
    name_hint: Optional[str] = None
    if isinstance(file, (bytes, bytearray)):
        content = bytes(file)
    elif isinstance(file, Path):
        content = file.read_bytes()
        name_hint = file.name
    elif hasattr(file, "read"):
        content = file.read()
        name_hint = getattr(file, "name", None)
        if not isinstance(content, (bytes, bytearray)):
            raise StorageError("File object must be opened in binary mode")
        content = bytes(content)
    else:
        raise StorageError(f"Unsupported upload source: {type(file).__name__}")

    if not content_type:
        for candidate in (name_hint, path):
            if candidate:
                guessed, _ = mimetypes.guess_type(str(candidate))
                if guessed:
                    content_type = guessed
                    break
    return content, content_type or "application/octet-stream"


class StorageProviderInterface(ABC):
    """
    Abstract interface for object storage adapters.

    Paths are bucket-relative (``avatars/uid.png``).
    """

    def __init__(self, context: ExecutionContext) -> None:
        self.context = context

    @abstractmethod
    async def upload_from_data_url(self, path: str, data_url: str) -> UploadResult:
        """Upload the payload of a ``data:`` URL."""
        pass

    @abstractmethod
    async def upload_file(
        self,
        path: str,
        file: FileSource,
        content_type: Optional[str] = None,
    ) -> UploadResult:
        """Upload raw bytes, a binary file object or a local file."""
        pass

    @abstractmethod
    async def get_download_url(self, path: str) -> str:
        """Get a durable download URL for an existing object."""
        pass

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        pass

    @abstractmethod
    async def file_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def get_storage_instance(self) -> Any:
        """Get the underlying vendor storage handle."""
        pass

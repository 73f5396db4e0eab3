import io
from pathlib import Path

import pytest
from storage3.exceptions import StorageApiError

from app.exceptions import StorageError
from app.providers.context import ExecutionContext
from app.providers.storage.supabase_impl import SupabaseStorageProvider

PUBLIC_URL = "https://abc.supabase.co/storage/v1/object/public/uploads"


@pytest.fixture
def storage(supabase_client):
    return SupabaseStorageProvider(supabase_client, ExecutionContext.CLIENT, bucket="uploads")


def stored(supabase_client, path):
    return supabase_client.storage.buckets["uploads"][path]


class TestSupabaseStorage:
    @pytest.mark.asyncio
    async def test_upload_from_data_url(self, storage, supabase_client):
        result = await storage.upload_from_data_url("avatars/u1.png", "data:image/png;base64,iVBORw0K")

        assert result.path == "avatars/u1.png"
        assert result.url == f"{PUBLIC_URL}/avatars/u1.png"
        content, options = stored(supabase_client, "avatars/u1.png")
        assert content == b"\x89PNG\r\n"
        assert options == {"content-type": "image/png", "upsert": "true"}

    @pytest.mark.asyncio
    async def test_invalid_data_url(self, storage):
        with pytest.raises(StorageError) as exc_info:
            await storage.upload_from_data_url("avatars/u1.png", "not-a-data-url")
        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "INVALID_DATA_URL"

    @pytest.mark.asyncio
    async def test_upload_bytes_guesses_type_from_path(self, storage, supabase_client):
        await storage.upload_file("docs/manual.pdf", b"%PDF-1.7")
        assert stored(supabase_client, "docs/manual.pdf")[1]["content-type"] == "application/pdf"

    @pytest.mark.asyncio
    async def test_upload_file_object_and_path(self, storage, supabase_client, tmp_path):
        await storage.upload_file("notes/a.bin", io.BytesIO(b"abc"), content_type="text/plain")
        assert stored(supabase_client, "notes/a.bin") == (b"abc", {"content-type": "text/plain", "upsert": "true"})

        local = tmp_path / "photo.jpg"
        local.write_bytes(b"\xff\xd8")
        await storage.upload_file("photos/p1", Path(local))
        assert stored(supabase_client, "photos/p1")[1]["content-type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_text_mode_file_rejected(self, storage):
        with pytest.raises(StorageError):
            await storage.upload_file("notes/a.txt", io.StringIO("text"))

    @pytest.mark.asyncio
    async def test_exists_and_delete(self, storage):
        await storage.upload_file("avatars/u1.png", b"png")
        assert await storage.file_exists("avatars/u1.png")
        assert not await storage.file_exists("avatars/u1")
        assert not await storage.file_exists("avatars/u2.png")

        await storage.delete_file("avatars/u1.png")
        assert not await storage.file_exists("avatars/u1.png")

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, storage):
        await storage.delete_file("avatars/none.png")

    @pytest.mark.asyncio
    async def test_download_url(self, storage):
        assert await storage.get_download_url("a/b.txt") == f"{PUBLIC_URL}/a/b.txt"

    @pytest.mark.asyncio
    async def test_vendor_error_mapped(self, storage, supabase_client):
        supabase_client.storage.error = StorageApiError("new row violates row-level security policy", "Unauthorized", 403)
        with pytest.raises(StorageError) as exc_info:
            await storage.upload_file("avatars/u1.png", b"png")
        assert exc_info.value.error_code == "UNAUTHORIZED"
        assert "row-level security" in exc_info.value.message

    def test_storage_instance(self, storage, supabase_client):
        assert storage.get_storage_instance() is supabase_client.storage

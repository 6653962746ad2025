import asyncio
import logging
import shutil
from pathlib import Path

from reelforge.config import get_settings
from reelforge.exceptions import StorageError

settings = get_settings()
logger = logging.getLogger(__name__)


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, base_path: str | None = None, base_url: str | None = None) -> None:
        self.base_path = Path(base_path or settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = (base_url or settings.local_storage_base_url).rstrip("/")

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = self.base_path / storage_key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    def get_public_url(self, storage_key: str) -> str:
        return f"{self.base_url}/{storage_key}"

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Copy a rendered artifact into the storage directory."""
        try:
            shutil.copy(local_path, str(self._get_full_path(storage_key)))
        except OSError as e:
            raise StorageError(f"Failed to store {storage_key}: {e}") from e
        return self.get_public_url(storage_key)

    def find_file(self, storage_key: str) -> Path | None:
        """Stored file for ``storage_key``, or None when missing or outside the storage root."""
        path = (self.base_path / storage_key).resolve()
        if not path.is_relative_to(self.base_path.resolve()) or not path.is_file():
            return None
        return path


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self) -> None:
        from google.cloud import storage

        self._storage = storage
        self._client = None
        self._bucket = None

    @property
    def client(self):
        if self._client is None:
            if settings.gcs_project_id:
                self._client = self._storage.Client(project=settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(settings.gcs_bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        return f"https://storage.googleapis.com/{settings.gcs_bucket_name}/{storage_key}"

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Upload from a local path; the blocking client call runs in a thread."""
        blob = self.bucket.blob(storage_key)
        try:
            await asyncio.to_thread(blob.upload_from_filename, local_path, content_type=content_type)
        except Exception as e:
            logger.error(f"[STORAGE] Upload of {storage_key} failed: {e}")
            raise StorageError(f"Failed to upload {storage_key}: {e}") from e
        return self.get_public_url(storage_key)


StorageService = LocalStorageService | GCSStorageService


def get_storage_service() -> StorageService:
    """Get the storage backend selected by settings."""
    if settings.use_local_storage:
        return LocalStorageService()
    return GCSStorageService()

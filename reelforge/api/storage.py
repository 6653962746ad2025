"""Serves rendered artifacts from local storage in development."""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from reelforge.api.deps import Storage
from reelforge.services.storage_service import LocalStorageService

router = APIRouter()

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".mp3": "audio/mpeg",
    ".aac": "audio/aac",
}


@router.get("/files/{storage_key:path}")
async def get_file(storage_key: str, storage: Storage):
    if not isinstance(storage, LocalStorageService):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage not enabled",
        )

    file_path = storage.find_file(storage_key)
    if file_path is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )

    return FileResponse(
        path=str(file_path),
        media_type=MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream"),
        filename=file_path.name,
    )

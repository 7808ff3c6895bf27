from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from app.core.dependencies import get_storage
from app.core.storage import BlobStore, LocalBlobStore, StorageError


def get_files_router(prefix: str) -> APIRouter:
    """Public read access to blobs kept by the local blob store."""

    router = APIRouter(prefix=prefix, tags=["files"])

    @router.get("/{key:path}")
    def get_stored_file(key: str, storage: BlobStore = Depends(get_storage)):
        # Remote stores hand out their own URLs; only local blobs are served here.
        if not isinstance(storage, LocalBlobStore):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
        try:
            file_path = storage.path_for(key)
        except StorageError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found") from exc
        if not file_path.is_file():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
        return FileResponse(file_path)

    return router

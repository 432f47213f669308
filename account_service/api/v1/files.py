"""Serve stored files (avatars) from the storage root."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from account_service.api.deps import get_file_storage
from account_service.core.errors import NotFoundError
from account_service.services.file_storage import FileStorage

router = APIRouter()


@router.get("/{file_path:path}")
def get_file(
    file_path: str,
    storage: Annotated[FileStorage, Depends(get_file_storage)],
) -> Response:
    """Return a stored file by its root-relative path; paths outside the root are rejected."""
    info = storage.get_info(file_path)
    if info is None:
        raise NotFoundError("File", "path", file_path)
    return Response(
        content=storage.load(file_path),
        media_type=info.content_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )

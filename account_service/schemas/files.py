"""Schemas describing stored files."""

from datetime import datetime

from pydantic import BaseModel, Field


class StoredFile(BaseModel):
    """Result of a successful write to file storage."""

    name: str = Field(..., description="Generated unique file name")
    path: str = Field(..., description="Path relative to the storage root")
    content_type: str
    size: int = Field(..., ge=0)


class FileInfo(BaseModel):
    name: str
    path: str
    size: int = Field(..., ge=0)
    content_type: str
    created_at: datetime
    last_modified: datetime


class StorageStats(BaseModel):
    total_files: int
    total_size: int
    average_file_size: int
    files_by_extension: dict[str, int]
    available_space: int

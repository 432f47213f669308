"""Local file storage for uploads: validation, containment under a fixed root, atomic writes."""

from __future__ import annotations

import logging
import mimetypes
import os
import shutil
import tempfile
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from account_service.core.errors import BusinessRuleViolation, InvalidFileError, PayloadTooLarge
from account_service.schemas.files import FileInfo, StorageStats, StoredFile

if TYPE_CHECKING:
    from account_service.core.config import Settings

logger = logging.getLogger(__name__)

# Temp files live next to their final name until os.replace moves them in.
TEMP_PREFIX = ".upload-"

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})
GENERIC_CONTENT_TYPES = frozenset({"", "application/octet-stream"})


def get_file_extension(filename: str) -> str:
    """Lowercase extension without the dot; names without one are rejected."""
    name = os.path.basename(filename.replace("\\", "/"))
    dot = name.rfind(".")
    if dot <= 0 or dot == len(name) - 1:
        raise InvalidFileError("File must have an extension")
    return name[dot + 1 :].lower()


def _looks_like_image(head: bytes) -> bool:
    if head[:2] == b"\xff\xd8":
        return True
    if head[:2] == b"\x89\x50":
        return True
    if head[:2] == b"\x47\x49":
        return True
    # WebP: "RIFF" <size> "WEBP"
    return len(head) >= 10 and head[8:10] == b"WE"


def _looks_like_pdf(head: bytes) -> bool:
    return head[:5] == b"%PDF-"


def _content_category(content_type: str | None, extension: str) -> str | None:
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype in GENERIC_CONTENT_TYPES:
        if extension in IMAGE_EXTENSIONS:
            return "image"
        if extension == "pdf":
            return "pdf"
        return None
    if ctype.startswith("image/"):
        return "image"
    if ctype == "application/pdf":
        return "pdf"
    if ctype.startswith("text/"):
        return "text"
    return None


def public_file_url(path: str, base_url: str = "", api_prefix: str = "/api/v1") -> str:
    """Link for a stored file: CDN/base URL when configured, else the API files route."""
    if base_url:
        return f"{base_url.rstrip('/')}/{path}"
    return f"{api_prefix}/files/{path}"


def validate_content(content: bytes, content_type: str | None, extension: str) -> None:
    """Check the leading bytes match the declared category; other types rely on the extension."""
    category = _content_category(content_type, extension)
    head = content[:12]
    if category == "image" and not _looks_like_image(head):
        raise InvalidFileError("File content does not match image format")
    if category == "pdf" and not _looks_like_pdf(head):
        raise InvalidFileError("File content does not match PDF format")
    if category is None:
        logger.debug("Content type %s: magic-number check skipped", content_type)


class FileStorage:
    """
    Stores files under a single root directory.

    Every caller-supplied path (subdirectory or stored reference) is resolved
    against the root and rejected with BusinessRuleViolation if the result
    escapes it, before any filesystem access.
    """

    def __init__(
        self,
        root: str | Path,
        max_file_size: int = 10 * 1024 * 1024,
        allowed_extensions: frozenset[str] | set[str] = frozenset(
            {"jpg", "jpeg", "png", "gif", "webp", "pdf"}
        ),
        public_base_url: str = "",
    ) -> None:
        self.root = Path(root).expanduser().resolve()
        self.max_file_size = max_file_size
        self.allowed_extensions = frozenset(ext.lower().lstrip(".") for ext in allowed_extensions)
        self.public_base_url = public_base_url.rstrip("/")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BusinessRuleViolation(f"Could not initialize file storage: {e}") from e
        logger.info("File storage initialized at: %s", self.root)

    @classmethod
    def from_settings(cls, settings: Settings) -> FileStorage:
        return cls(
            root=settings.FILE_STORAGE_PATH,
            max_file_size=settings.FILE_MAX_SIZE_BYTES,
            allowed_extensions=settings.allowed_extensions,
            public_base_url=settings.FILE_PUBLIC_BASE_URL,
        )

    # --- path handling -----------------------------------------------------

    def resolve(self, relative: str | None) -> Path:
        """Absolute path for a root-relative reference; fails closed on escape."""
        if relative is None or relative in ("", "."):
            return self.root
        if "\x00" in relative:
            raise BusinessRuleViolation("Invalid path")
        candidate = (self.root / relative).resolve()
        if candidate != self.root and not candidate.is_relative_to(self.root):
            logger.warning("Rejected path outside storage root: %r", relative)
            raise BusinessRuleViolation("Cannot access file outside storage directory")
        return candidate

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    # --- validation --------------------------------------------------------

    def validate(
        self,
        content: bytes,
        content_type: str | None,
        filename: str | None,
        size_bytes: int | None = None,
    ) -> str:
        """Validate an upload and return its lowercase extension."""
        if not content:
            raise InvalidFileError("Cannot store empty file")
        size = max(len(content), size_bytes or 0)
        if size > self.max_file_size:
            raise PayloadTooLarge(
                f"File size ({size} bytes) exceeds maximum allowed size ({self.max_file_size} bytes)"
            )
        if not filename:
            raise InvalidFileError("Filename is required")
        extension = get_file_extension(filename)
        if extension not in self.allowed_extensions:
            raise InvalidFileError(
                f"File type '.{extension}' is not allowed. "
                f"Allowed types: {', '.join(sorted(self.allowed_extensions))}"
            )
        validate_content(content, content_type, extension)
        return extension

    # --- operations --------------------------------------------------------

    def store(
        self,
        content: bytes,
        content_type: str | None,
        filename: str | None,
        subdirectory: str | None = None,
        size_bytes: int | None = None,
    ) -> StoredFile:
        """Validate and write content under a generated unique name."""
        extension = self.validate(content, content_type, filename, size_bytes)
        target_dir = self.resolve(subdirectory)
        unique_name = f"{uuid.uuid4().hex}.{extension}"
        target = target_dir / unique_name
        if not target.is_relative_to(self.root):
            raise BusinessRuleViolation("Cannot store file outside storage directory")

        target_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=target_dir)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            logger.error("Failed to store file %s: %s", target, e)
            raise BusinessRuleViolation(f"Failed to store file: {e}") from e

        logger.info("File stored: %s (%d bytes)", target, len(content))
        return StoredFile(
            name=unique_name,
            path=self._relative(target),
            content_type=content_type or mimetypes.guess_type(unique_name)[0]
            or "application/octet-stream",
            size=len(content),
        )

    def load(self, path: str) -> bytes:
        target = self.resolve(path)
        if not target.is_file():
            raise BusinessRuleViolation(f"File not found: {path}")
        try:
            return target.read_bytes()
        except OSError as e:
            logger.error("Could not read file %s: %s", path, e)
            raise BusinessRuleViolation(f"Could not read file: {e}") from e

    def delete(self, path: str) -> bool:
        """Delete a stored file; False if it did not exist."""
        target = self.resolve(path)
        if not target.is_file():
            logger.warning("File not found for deletion: %s", path)
            return False
        target.unlink()
        logger.info("File deleted: %s", path)
        return True

    def _info(self, target: Path) -> FileInfo:
        stat = target.stat()
        return FileInfo(
            name=target.name,
            path=self._relative(target),
            size=stat.st_size,
            content_type=mimetypes.guess_type(target.name)[0] or "application/octet-stream",
            created_at=datetime.fromtimestamp(stat.st_ctime, tz=UTC),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
        )

    def get_info(self, path: str) -> FileInfo | None:
        target = self.resolve(path)
        if not target.is_file():
            return None
        return self._info(target)

    def list_files(self, subdirectory: str | None = None) -> list[FileInfo]:
        """Regular files directly inside the directory (not recursive)."""
        directory = self.resolve(subdirectory)
        if not directory.is_dir():
            return []
        return [
            self._info(entry)
            for entry in sorted(directory.iterdir())
            if entry.is_file() and not entry.name.startswith(TEMP_PREFIX)
        ]

    def cleanup_older_than(
        self,
        days: int,
        subdirectory: str | None = None,
        keep: frozenset[str] | set[str] = frozenset(),
    ) -> int:
        """
        Delete files last modified more than `days` ago; returns how many went.

        `keep` holds root-relative paths that must survive (e.g. avatars still
        referenced by an account).
        """
        if days < 0:
            raise BusinessRuleViolation("days must be non-negative")
        directory = self.resolve(subdirectory)
        if not directory.is_dir():
            return 0
        cutoff = (datetime.now(UTC) - timedelta(days=days)).timestamp()
        deleted = 0
        for entry in list(directory.rglob("*")):
            if not entry.is_file() or entry.is_symlink():
                continue
            if self._relative(entry) in keep:
                continue
            try:
                if entry.stat().st_mtime < cutoff:
                    entry.unlink()
                    deleted += 1
                    logger.debug("Deleted old file: %s", entry)
            except OSError as e:
                logger.error("Could not delete old file %s: %s", entry, e)
        logger.info("Cleanup completed. Deleted %d old files", deleted)
        return deleted

    def storage_stats(self) -> StorageStats:
        total_size = 0
        file_count = 0
        by_extension: dict[str, int] = {}
        for entry in self.root.rglob("*"):
            if not entry.is_file():
                continue
            total_size += entry.stat().st_size
            file_count += 1
            try:
                extension = get_file_extension(entry.name)
            except InvalidFileError:
                extension = "unknown"
            by_extension[extension] = by_extension.get(extension, 0) + 1
        return StorageStats(
            total_files=file_count,
            total_size=total_size,
            average_file_size=total_size // file_count if file_count else 0,
            files_by_extension=by_extension,
            available_space=shutil.disk_usage(self.root).free,
        )

    def public_url(self, path: str, api_prefix: str = "/api/v1") -> str:
        return public_file_url(path, self.public_base_url, api_prefix)

"""Periodic maintenance: release expired account locks and remove stale, unreferenced uploads."""

import logging
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from account_service.services.accounts import AccountService
from account_service.services.file_storage import FileStorage

if TYPE_CHECKING:
    from account_service.core.config import Settings

logger = logging.getLogger(__name__)


def run_maintenance(
    session: Session,
    settings: "Settings",
    storage: FileStorage | None = None,
) -> tuple[int, int]:
    """
    Release lapsed lockouts and delete files older than FILE_CLEANUP_DAYS that
    no account references.

    Returns (locks_released, files_deleted). Idempotent: safe to run repeatedly.
    """
    if not settings.CLEANUP_ENABLED:
        logger.info("Maintenance is disabled (CLEANUP_ENABLED=false); skipping.")
        return (0, 0)

    service = AccountService(session, settings=settings, storage=storage)
    locks_released = service.release_expired_locks()
    keep = service.referenced_avatar_paths()
    files_deleted = service.storage.cleanup_older_than(settings.FILE_CLEANUP_DAYS, keep=keep)

    if locks_released or files_deleted:
        logger.info(
            "Maintenance run: locks_released=%s, files_deleted=%s",
            locks_released,
            files_deleted,
        )
    return (locks_released, files_deleted)

"""
File record operations shared by the owner and admin routers.
"""

import logging
import uuid
from typing import Optional, Sequence

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal
from app.core.errors import NotFound
from app.models.file_record import File
from app.s3.client import s3_client
from shared_schemas.file_service import FileAction

logger = logging.getLogger(__name__)


# Target value of File.is_deleted for each action
FILE_ACTION_TRANSITIONS = {
    FileAction.RESTORE: False,
    FileAction.DELETE: True,
}


def file_query(
    owner_id: Optional[uuid.UUID] = None,
    deleted: Optional[bool] = False,
    search: Optional[str] = None
) -> Select:
    """
    Build a SELECT over files.

    Args:
        owner_id: Restrict to one owner (None for all owners)
        deleted: True for trash, False for live files, None for both
        search: Case-insensitive substring of the file name
    """
    stmt = select(File)
    if owner_id is not None:
        stmt = stmt.where(File.user_id == owner_id)
    if deleted is not None:
        stmt = stmt.where(File.is_deleted == deleted)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(File.name.ilike(pattern), File.type.ilike(pattern)))
    return stmt


async def list_files(
    db: AsyncSession,
    stmt: Select,
    offset: int,
    limit: int
) -> tuple[Sequence[File], int]:
    """Page through a file query, newest activity first."""
    total = await db.scalar(select(func.count()).select_from(stmt.subquery()))
    result = await db.execute(
        stmt.order_by(File.updated_at.desc()).offset(offset).limit(limit)
    )
    return result.scalars().all(), total or 0


async def get_file_for(db: AsyncSession, file_id: uuid.UUID, principal: Principal) -> File:
    """
    Load a file the principal may act on (owner, or any file for admins).

    Raises:
        NotFound: If missing or owned by someone else
    """
    file = await db.get(File, file_id)
    if file is None or (file.user_id != principal.id and not principal.is_admin):
        raise NotFound("File not found")
    return file


def apply_file_action(files: Sequence[File], action: FileAction) -> int:
    """Set is_deleted per the transition table. Returns how many files changed."""
    target = FILE_ACTION_TRANSITIONS[action]
    changed = 0
    for file in files:
        if file.is_deleted != target:
            file.is_deleted = target
            changed += 1
    return changed


async def hard_delete_files(db: AsyncSession, files: Sequence[File]) -> int:
    """
    Remove each object from the store, then commit the removal of its row.

    Raises:
        StoreUnavailable: If an object could not be deleted. Files handled
            before it are gone from both the store and the database; it and
            the files after it keep their rows.
    """
    for file in files:
        await s3_client.delete_object(file.path)
        await db.delete(file)
        await db.commit()
        logger.info(f"Hard deleted file {file.id} ({file.path})")
    return len(files)

"""
File API endpoints for the owner.
Listing, trash, restore, hard delete and presigned downloads.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared_schemas.file_service import (
    BulkActionResponse,
    BulkFileActionRequest,
    DownloadUrlResponse,
    FileActionRequest,
    FileCountResponse,
    FileListResponse,
    FileRecord,
)
from app.core.auth import Principal, get_current_principal
from app.core.config import RouteClass, settings
from app.core.database import get_db
from app.core.errors import NotFound
from app.core.manager.file_manager import (
    apply_file_action,
    file_query,
    get_file_for,
    hard_delete_files,
    list_files,
)
from app.core.rate_limit import rate_limit
from app.models.file_record import File
from app.s3.client import s3_client

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/files",
    tags=["files"],
    dependencies=[Depends(rate_limit(RouteClass.FILES))]
)


@router.get("", response_model=FileListResponse)
async def list_my_files(
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=255),
    deleted: bool = Query(False, description="List the trash instead of live files"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's files, most recently updated first."""
    stmt = file_query(owner_id=principal.id, deleted=deleted, search=search)
    files, total = await list_files(db, stmt, offset, limit)
    return FileListResponse(
        files=[FileRecord.model_validate(f) for f in files],
        total=total,
        offset=offset,
        limit=limit
    )


@router.get("/count", response_model=FileCountResponse)
async def count_my_files(
    deleted: bool = Query(False),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Count the caller's live (or trashed) files."""
    _, total = await list_files(db, file_query(owner_id=principal.id, deleted=deleted), 0, 1)
    return FileCountResponse(count=total)


@router.get("/download/{file_id}", response_model=DownloadUrlResponse)
async def download_file(
    file_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """
    Issue a presigned GET URL. Bytes never pass through this service.

    Owners can download their live files; admins can download any file.
    """
    file = await get_file_for(db, file_id, principal)
    if file.is_deleted and not principal.is_admin:
        raise NotFound("File not found")

    url = s3_client.generate_presigned_url(
        key=file.path,
        expiration=settings.PRESIGNED_URL_EXPIRATION,
        filename=file.name
    )
    return DownloadUrlResponse(
        url=url,
        expires_in=settings.PRESIGNED_URL_EXPIRATION,
        filename=file.name
    )


@router.patch("/bulk", response_model=BulkActionResponse)
async def bulk_file_action(
    request: BulkFileActionRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Move several of the caller's files to or from the trash."""
    result = await db.execute(
        select(File).where(File.id.in_(request.file_ids), File.user_id == principal.id)
    )
    files = result.scalars().all()
    changed = apply_file_action(files, request.action)
    await db.commit()

    logger.info(f"Bulk {request.action.value} by {principal.id}: {changed}/{len(request.file_ids)} files")
    return BulkActionResponse(affected=changed)


@router.patch("/{file_id}", response_model=FileRecord)
async def file_action(
    file_id: uuid.UUID,
    request: FileActionRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Soft delete or restore one file."""
    file = await get_file_for(db, file_id, principal)
    apply_file_action([file], request.action)
    await db.commit()
    return FileRecord.model_validate(file)


@router.delete("/{file_id}", response_model=BulkActionResponse)
async def hard_delete_file(
    file_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db)
):
    """Permanently delete a file and its object."""
    file = await get_file_for(db, file_id, principal)
    affected = await hard_delete_files(db, [file])
    return BulkActionResponse(affected=affected)

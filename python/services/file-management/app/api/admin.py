"""
Admin console API endpoints.
All files, upload history and user management. ADMIN role only.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared_schemas.file_service import (
    BulkActionResponse,
    BulkDeleteRequest,
    CreateUserRequest,
    FileActionRequest,
    FileListResponse,
    FileRecord,
    UpdateUserRequest,
    UploadHistoryEntry,
    UploadHistoryListResponse,
    UploadStatus,
    UserInfo,
    UserListResponse,
)
from app.core.auth import Principal, require_admin
from app.core.config import RouteClass
from app.core.database import get_db
from app.core.errors import InvalidRequest, NotFound
from app.core.manager.file_manager import (
    apply_file_action,
    file_query,
    get_file_for,
    hard_delete_files,
    list_files,
)
from app.core.rate_limit import rate_limit
from app.models.file_record import File
from app.models.upload_history import UploadHistory
from app.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin), Depends(rate_limit(RouteClass.FILES))]
)

# status query value -> File.is_deleted filter
FILE_STATUS_FILTERS = {"active": False, "deleted": True, "all": None}


# ============================================================================
# Files
# ============================================================================

@router.get("/files", response_model=FileListResponse)
async def list_all_files(
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=255),
    file_status: str = Query("all", alias="status", pattern="^(active|deleted|all)$"),
    db: AsyncSession = Depends(get_db)
):
    """List files across all users."""
    stmt = file_query(deleted=FILE_STATUS_FILTERS[file_status], search=search)
    files, total = await list_files(db, stmt, offset, limit)
    return FileListResponse(
        files=[FileRecord.model_validate(f) for f in files],
        total=total,
        offset=offset,
        limit=limit
    )


@router.patch("/files/{file_id}", response_model=FileRecord)
async def admin_file_action(
    file_id: uuid.UUID,
    request: FileActionRequest,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Soft delete or restore any file."""
    file = await get_file_for(db, file_id, principal)
    apply_file_action([file], request.action)
    await db.commit()

    logger.info(f"Admin {principal.email} applied {request.action.value} to file {file_id}")
    return FileRecord.model_validate(file)


@router.post("/files/bulk-delete", response_model=BulkActionResponse)
async def admin_bulk_delete(
    request: BulkDeleteRequest,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Permanently delete several files and their objects."""
    result = await db.execute(select(File).where(File.id.in_(request.file_ids)))
    affected = await hard_delete_files(db, result.scalars().all())

    logger.info(f"Admin {principal.email} hard deleted {affected} files")
    return BulkActionResponse(affected=affected)


# ============================================================================
# Upload history
# ============================================================================

@router.get("/upload-history", response_model=UploadHistoryListResponse)
async def list_upload_history(
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=255),
    history_status: Optional[UploadStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db)
):
    """Audit log of completion attempts, newest first."""
    stmt = (
        select(UploadHistory, File.name, User.email)
        .outerjoin(File, UploadHistory.file_id == File.id)
        .join(User, UploadHistory.user_id == User.id)
    )
    if history_status is not None:
        stmt = stmt.where(UploadHistory.status == history_status)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(File.name.ilike(pattern), User.email.ilike(pattern)))

    total = await db.scalar(select(func.count()).select_from(stmt.subquery()))
    result = await db.execute(
        stmt.order_by(UploadHistory.created_at.desc()).offset(offset).limit(limit)
    )

    items = []
    for entry, file_name, user_email in result.all():
        item = UploadHistoryEntry.model_validate(entry)
        item.file_name = file_name
        item.user_email = user_email
        items.append(item)

    return UploadHistoryListResponse(items=items, total=total or 0)


# ============================================================================
# Users
# ============================================================================

async def _get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@router.get("/users", response_model=UserListResponse)
async def list_users(
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=255),
    db: AsyncSession = Depends(get_db)
):
    """List users, newest first."""
    stmt = select(User)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.email.ilike(pattern), User.name.ilike(pattern)))

    total = await db.scalar(select(func.count()).select_from(stmt.subquery()))
    result = await db.execute(stmt.order_by(User.created_at.desc()).offset(offset).limit(limit))
    return UserListResponse(
        users=[UserInfo.model_validate(u) for u in result.scalars().all()],
        total=total or 0
    )


@router.post("/users", response_model=UserInfo, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    db: AsyncSession = Depends(get_db)
):
    """Create a user ahead of their first sign-in."""
    user = User(
        email=request.email,
        name=request.name or request.email.split("@")[0],
        role=request.role
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise InvalidRequest(f"User {request.email} already exists")

    logger.info(f"Created user {user.email} (role={user.role.value})")
    return UserInfo.model_validate(user)


@router.patch("/users/{user_id}", response_model=UserInfo)
async def update_user(
    user_id: uuid.UUID,
    request: UpdateUserRequest,
    db: AsyncSession = Depends(get_db)
):
    """Change a user's name, email or role."""
    user = await _get_user(db, user_id)
    for field, value in request.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise InvalidRequest(f"Email {request.email} is already in use")

    return UserInfo.model_validate(user)


@router.delete("/users/{user_id}", response_model=BulkActionResponse)
async def delete_user(
    user_id: uuid.UUID,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete a user. Admins cannot delete themselves."""
    if user_id == principal.id:
        raise InvalidRequest("You cannot delete your own account")

    user = await _get_user(db, user_id)
    await db.delete(user)
    await db.commit()

    logger.info(f"Admin {principal.email} deleted user {user_id}")
    return BulkActionResponse(affected=1)

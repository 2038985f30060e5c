"""
Upload lifecycle API endpoints.
init-multipart, upload-multipart, complete-multipart and abort-multipart.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from shared_schemas.file_service import (
    AbortUploadRequest,
    AbortUploadResponse,
    CompleteUploadRequest,
    CompleteUploadResponse,
    FileRecord,
    InitUploadRequest,
    InitUploadResponse,
    UploadPartResponse,
)
from app.core.auth import Principal, get_current_principal
from app.core.config import RouteClass
from app.core.database import get_db
from app.core.manager.upload_coordinator import UploadCoordinator, get_upload_coordinator
from app.core.rate_limit import rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/files",
    tags=["uploads"],
    dependencies=[Depends(rate_limit(RouteClass.UPLOAD))]
)


@router.post("/init-multipart", response_model=InitUploadResponse)
async def init_multipart(
    request: InitUploadRequest,
    principal: Principal = Depends(get_current_principal),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator)
):
    """
    Start a multipart upload.

    The key is derived from the caller id and the file name; an existing
    object with the same name gets a "(n)" suffix instead of being overwritten.
    """
    session = await coordinator.init_upload(
        owner=principal,
        original_name=request.original_name,
        content_type=request.content_type
    )
    return InitUploadResponse(upload_id=session.upload_id, key=session.key)


@router.post("/upload-multipart", response_model=UploadPartResponse)
async def upload_multipart(
    file: UploadFile = File(...),
    upload_id: str = Form(..., alias="uploadId"),
    part_number: int = Form(..., alias="partNumber"),
    key: str = Form(...),
    principal: Principal = Depends(get_current_principal),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator)
):
    """Upload one part. Retrying a part number replaces the earlier tag."""
    body = await file.read()
    part = await coordinator.upload_part(
        owner=principal,
        upload_id=upload_id,
        key=key,
        part_number=part_number,
        body=body
    )
    return UploadPartResponse(etag=part.etag, part_number=part.part_number)


@router.post("/complete-multipart", response_model=CompleteUploadResponse)
async def complete_multipart(
    request: CompleteUploadRequest,
    principal: Principal = Depends(get_current_principal),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
    db: AsyncSession = Depends(get_db)
):
    """Assemble the parts and record the file."""
    record = await coordinator.complete_upload(db, principal, request)
    return CompleteUploadResponse(file=FileRecord.model_validate(record))


@router.post("/abort-multipart", response_model=AbortUploadResponse)
async def abort_multipart(
    request: AbortUploadRequest,
    principal: Principal = Depends(get_current_principal),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator)
):
    """Abort an upload. Store cleanup is best-effort."""
    await coordinator.abort_upload(principal, request.upload_id, request.key)
    return AbortUploadResponse()

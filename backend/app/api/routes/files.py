from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, File as FastAPIFile, Query, status
from fastapi.responses import FileResponse as FileDownloadResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, field_serializer
from datetime import datetime
from app.core.database import get_db
from app.core.enums import ActivityAction, DenyReason, Operation, ShareAccessType
from app.api.dependencies import get_current_actor, require
from app.models.file import File
from app.services.access_policy import Actor, Decision, access_policy
from app.services.access_service import access_service
from app.services.access_control_service import access_control_service
from app.services.file_service import file_service
from app.services.resource_store import resource_store
from app.storage.local_storage import storage

router = APIRouter(prefix="/files", tags=["files"])


class FileResponse(BaseModel):
    id: int
    folder_id: int
    name: str
    mimetype: str
    size: int
    uploaded_by: int
    uploaded_at: datetime
    downloads: int
    version: int

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('uploaded_at')
    def serialize_uploaded_at(self, value: datetime, _info):
        return value.isoformat() if value else None


class ShareRequest(BaseModel):
    user_id: Optional[int] = None
    department: Optional[str] = None
    access_type: ShareAccessType = ShareAccessType.DOWNLOAD
    expected_version: Optional[int] = None


class UnshareRequest(BaseModel):
    user_id: Optional[int] = None
    department: Optional[str] = None


def _file_change_decision(db: Session, actor: Actor, file: File, operation: Operation) -> Decision:
    """Folder managers may change any file; the uploader may change their own"""
    decision = access_service.decide(db, actor, file.folder_id, operation)
    if decision:
        return decision
    if decision.reason != DenyReason.EXPLICITLY_DENIED and file.uploaded_by == actor.id:
        return Decision.allow("uploader")
    return decision


@router.get("/{file_id}", response_model=FileResponse)
async def get_file(
    file_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Get a single file by ID"""
    db_file = resource_store.get_file(db, file_id)
    require(access_service.decide(db, actor, db_file.folder_id, Operation.VIEW, file_id=file_id))
    access_service.record(db, ActivityAction.VIEW, actor.id, folder_id=db_file.folder_id, file_id=file_id)
    return resource_store.get_file(db, file_id)


@router.get("/{file_id}/download")
async def download_file(
    file_id: int,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Download a file"""
    db_file = resource_store.get_file(db, file_id)
    decision = require(access_service.decide(db, actor, db_file.folder_id, Operation.VIEW, file_id=file_id))
    if decision.basis == "share" and not access_policy.share_allows_download(actor, db_file):
        require(Decision.deny(DenyReason.INSUFFICIENT_PRIVILEGE))

    if not storage.exists(db_file.path):
        raise HTTPException(status_code=404, detail="File not found on disk")

    ip_address = request.client.host if request.client else None
    file_service.record_download(db, actor, db_file, ip_address)
    db_file = resource_store.get_file(db, file_id)
    return FileDownloadResponse(db_file.path, media_type=db_file.mimetype, filename=db_file.name)


@router.delete("/{file_id}")
async def delete_file(
    file_id: int,
    expected_version: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """
    Soft-delete a file.
    The record, its bytes and its activity history are kept for audit.
    """
    db_file = resource_store.get_file(db, file_id)
    require(_file_change_decision(db, actor, db_file, Operation.DELETE))
    file_service.delete_file(db, actor, db_file, expected_version)
    return {"message": "File deleted successfully"}


@router.post("/{file_id}/share")
async def share_file(
    file_id: int,
    share: ShareRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_control_service.share_file(
        db, actor, file_id,
        user_id=share.user_id,
        department=share.department,
        access_type=share.access_type.value,
        expected_version=share.expected_version,
    ))
    return {"message": "File shared successfully",
            "shared_with": resource_store.get_file(db, file_id).shared_with}


@router.delete("/{file_id}/share")
async def unshare_file(
    file_id: int,
    unshare: UnshareRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_control_service.unshare_file(
        db, actor, file_id, user_id=unshare.user_id, department=unshare.department))
    return {"message": "Access revoked successfully"}


@router.get("/{file_id}/versions")
async def list_versions(
    file_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    db_file = resource_store.get_file(db, file_id)
    require(access_service.decide(db, actor, db_file.folder_id, Operation.VIEW, file_id=file_id))
    return db_file.versions or []


@router.post("/{file_id}/versions", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
async def create_version(
    file_id: int,
    file: UploadFile = FastAPIFile(...),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Upload new content; the current content is kept as a version"""
    db_file = resource_store.get_file(db, file_id)
    require(_file_change_decision(db, actor, db_file, Operation.MANAGE))
    return await file_service.add_version(db, actor, db_file, file)


@router.post("/{file_id}/versions/{index}/restore", response_model=FileResponse)
async def restore_version(
    file_id: int,
    index: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    db_file = resource_store.get_file(db, file_id)
    require(_file_change_decision(db, actor, db_file, Operation.MANAGE))
    return file_service.restore_version(db, actor, db_file, index)


@router.get("/", response_model=List[FileResponse])
async def list_my_files(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Active files uploaded by the current user"""
    return (
        db.query(File)
        .filter(File.uploaded_by == actor.id, File.is_deleted.is_(False))
        .order_by(File.uploaded_at.desc())
        .all()
    )

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File as FastAPIFile, Form, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from datetime import datetime
from app.core.database import get_db
from app.core.enums import Operation
from app.api.dependencies import get_current_actor, require
from app.api.routes.files import FileResponse
from app.services.access_policy import Actor
from app.services.access_service import access_service
from app.services.access_control_service import access_control_service
from app.services.file_service import file_service
from app.services.folder_service import folder_service
from app.services.resource_store import resource_store

router = APIRouter(prefix="/folders", tags=["folders"])


class FolderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    department: str
    is_public: bool = False
    allowed_departments: Optional[List[str]] = None
    allowed_users: Optional[List[int]] = None


class FolderResponse(BaseModel):
    id: int
    name: str
    description: str
    department: str
    is_public: bool
    created_by: int
    file_count: int
    total_size: int
    last_modified: Optional[datetime]
    version: int
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('last_modified', 'created_at')
    def serialize_datetime(self, value: Optional[datetime], _info):
        return value.isoformat() if value else None


class AccessChange(BaseModel):
    departments: List[str] = []
    user_ids: List[int] = []
    # Version of the folder the change was prepared against
    expected_version: Optional[int] = None


class FolderUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_public: Optional[bool] = None
    allowed_departments: Optional[List[str]] = None
    expected_version: Optional[int] = None


class BlockRequest(BaseModel):
    user_id: int
    reason: Optional[str] = Field(default=None, max_length=500)
    expected_version: Optional[int] = None


@router.post("/", response_model=FolderResponse, status_code=201)
async def create_folder(
    folder: FolderCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Create a folder - the creator becomes its owner"""
    return folder_service.create_folder(db, actor, **folder.model_dump())


@router.get("/", response_model=List[FolderResponse])
async def list_folders(
    department: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List folders the current user can view"""
    return access_service.list_visible_folders(db, actor, department)


@router.get("/{folder_id}", response_model=FolderResponse)
async def get_folder(
    folder_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_service.decide(db, actor, folder_id, Operation.VIEW))
    return resource_store.get_folder(db, folder_id)


@router.patch("/{folder_id}", response_model=FolderResponse)
async def update_folder(
    folder_id: int,
    update: FolderUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Rename, describe, publish/unpublish or change allowed departments"""
    require(access_control_service.update_folder(db, actor, folder_id, **update.model_dump()))
    return resource_store.get_folder(db, folder_id)


@router.delete("/{folder_id}")
async def delete_folder(
    folder_id: int,
    cascade: bool = Query(False, description="Soft-delete the folder's active files too"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_service.decide(db, actor, folder_id, Operation.DELETE))
    folder = resource_store.get_folder(db, folder_id)
    cascaded = folder_service.delete_folder(db, actor, folder, cascade=cascade)
    return {"message": "Folder deleted successfully", "cascaded_files": len(cascaded)}


@router.get("/{folder_id}/permissions")
async def get_permissions(
    folder_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """What the current user may do with this folder"""
    return access_service.permissions(db, actor, folder_id)


@router.get("/{folder_id}/access")
async def get_access(
    folder_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Access lists and file grants - managers only"""
    require(access_service.decide(db, actor, folder_id, Operation.MANAGE))
    return access_service.list_access(db, folder_id)


@router.post("/{folder_id}/access/grant")
async def grant_access(
    folder_id: int,
    change: AccessChange,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_control_service.grant_access(
        db, actor, folder_id,
        departments=change.departments,
        user_ids=change.user_ids,
        expected_version=change.expected_version,
    ))
    return access_service.list_access(db, folder_id)


@router.post("/{folder_id}/access/revoke")
async def revoke_access(
    folder_id: int,
    change: AccessChange,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_control_service.revoke_access(
        db, actor, folder_id,
        departments=change.departments,
        user_ids=change.user_ids,
        expected_version=change.expected_version,
    ))
    return access_service.list_access(db, folder_id)


@router.post("/{folder_id}/block")
async def block_user(
    folder_id: int,
    request: BlockRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_control_service.block_user(
        db, actor, folder_id, request.user_id,
        reason=request.reason,
        expected_version=request.expected_version,
    ))
    return {"message": "User blocked successfully"}


@router.delete("/{folder_id}/block/{user_id}")
async def unblock_user(
    folder_id: int,
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    require(access_control_service.unblock_user(db, actor, folder_id, user_id))
    return {"message": "User unblocked successfully"}


@router.get("/{folder_id}/files", response_model=List[FileResponse])
async def list_files(
    folder_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Active files the current user can view"""
    folder = resource_store.get_folder(db, folder_id)
    files = file_service.list_visible_files(db, actor, folder)
    if not files:
        require(access_service.decide(db, actor, folder_id, Operation.VIEW))
    return files


@router.post("/{folder_id}/files", response_model=FileResponse, status_code=201)
async def upload_file(
    folder_id: int,
    file: UploadFile = FastAPIFile(...),
    description: Optional[str] = Form(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Upload a file into a folder"""
    require(access_service.decide(db, actor, folder_id, Operation.UPLOAD))
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename is required")
    folder = resource_store.get_folder(db, folder_id)
    return await file_service.upload_file(db, actor, folder, file, description=description)

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, field_serializer
from datetime import datetime, timedelta, timezone
from app.core.database import get_db
from app.core.enums import ActivityAction, DenyReason, Operation, Role
from app.api.dependencies import get_current_actor, require
from app.services.access_policy import Actor, Decision, access_policy
from app.services.activity_ledger import ActivityFilter, activity_ledger
from app.services.resource_store import resource_store

router = APIRouter(prefix="/activity", tags=["activity"])


class ActivityResponse(BaseModel):
    id: int
    action: str
    user_id: int
    file_id: Optional[int]
    folder_id: Optional[int]
    file_name: Optional[str]
    folder_name: Optional[str]
    target_user_id: Optional[int]
    details: dict
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer('timestamp')
    def serialize_timestamp(self, value: datetime, _info):
        return value.isoformat() if value else None


class ActivityPage(BaseModel):
    total: int
    offset: int
    limit: int
    entries: List[ActivityResponse]


def _audit_decision(db: Session, actor: Actor, folder_id: Optional[int],
                    file_id: Optional[int], user_id: Optional[int]) -> Decision:
    """Admins see everything, folder managers their folders, users their own trail"""
    if actor.role == Role.ADMIN:
        return Decision.allow("admin")
    if file_id is not None and folder_id is None:
        folder_id = resource_store.get_file(db, file_id, include_deleted=True).folder_id
    if folder_id is not None:
        folder = resource_store.get_folder(db, folder_id, include_deleted=True)
        return access_policy.decide(actor, folder, Operation.MANAGE)
    if user_id == actor.id:
        return Decision.allow("self")
    return Decision.deny(DenyReason.INSUFFICIENT_PRIVILEGE)


@router.get("/", response_model=ActivityPage)
async def query_activity(
    folder_id: Optional[int] = Query(None),
    file_id: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None),
    action: Optional[ActivityAction] = Query(None),
    days: Optional[int] = Query(30, ge=1, description="Look back this many days when since is not given"),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Activity log entries, oldest first"""
    require(_audit_decision(db, actor, folder_id, file_id, user_id))

    if since is None and days is not None:
        since = datetime.now(timezone.utc) - timedelta(days=days)

    query = activity_ledger.query(db, ActivityFilter(
        folder_id=folder_id,
        file_id=file_id,
        user_id=user_id,
        action=action,
        since=since,
        until=until,
    ))
    return {
        "total": query.count(),
        "offset": offset,
        "limit": limit,
        "entries": query.page(offset, limit),
    }

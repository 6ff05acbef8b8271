"""
Authorization checks exposed to the HTTP layer.

Every check loads one consistent folder snapshot and hands it to the policy
evaluator. Checks fail closed: if the database times out or the connection
drops, the answer is "no", never "yes".
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.enums import ActivityAction, Operation
from app.core.exceptions import NotFoundError
from app.services.access_policy import AccessPolicy, Actor, Decision, access_policy
from app.services.activity_ledger import ActivityLedger, activity_ledger
from app.services.resource_store import ResourceStore, resource_store

logger = logging.getLogger(__name__)


class AccessService:
    def __init__(
        self,
        policy: AccessPolicy = access_policy,
        store: ResourceStore = resource_store,
        ledger: ActivityLedger = activity_ledger,
    ):
        self.policy = policy
        self.store = store
        self.ledger = ledger

    def decide(
        self,
        db: Session,
        actor: Actor,
        folder_id: int,
        operation: Operation,
        file_id: Optional[int] = None,
        target_user_id: Optional[int] = None,
    ) -> Decision:
        folder = self.store.get_folder(db, folder_id)
        file = None
        if file_id is not None:
            file = self.store.get_file(db, file_id)
            if file.folder_id != folder.id:
                raise NotFoundError(f"File {file_id} not found in folder {folder_id}")
        return self.policy.decide(actor, folder, operation, file=file, target_user_id=target_user_id)

    def _check(self, db: Session, actor: Actor, folder_id: int, operation: Operation, **kwargs) -> bool:
        try:
            return bool(self.decide(db, actor, folder_id, operation, **kwargs))
        except OperationalError as e:
            db.rollback()
            logger.error(f"Access check {operation.value} on folder {folder_id} failed closed: {e}")
            return False

    def can_view(self, db: Session, actor: Actor, folder_id: int, file_id: Optional[int] = None) -> bool:
        return self._check(db, actor, folder_id, Operation.VIEW, file_id=file_id)

    def can_upload(self, db: Session, actor: Actor, folder_id: int) -> bool:
        return self._check(db, actor, folder_id, Operation.UPLOAD)

    def can_manage(self, db: Session, actor: Actor, folder_id: int) -> bool:
        return self._check(db, actor, folder_id, Operation.MANAGE)

    def can_delete(self, db: Session, actor: Actor, folder_id: int) -> bool:
        return self._check(db, actor, folder_id, Operation.DELETE)

    def can_block(self, db: Session, actor: Actor, folder_id: int, target_user_id: int) -> bool:
        return self._check(db, actor, folder_id, Operation.BLOCK, target_user_id=target_user_id)

    def permissions(self, db: Session, actor: Actor, folder_id: int) -> Dict[str, bool]:
        """Folder-level capabilities of the actor, from a single snapshot"""
        folder = self.store.get_folder(db, folder_id)
        return {
            operation.value: bool(self.policy.decide(actor, folder, operation))
            for operation in (Operation.VIEW, Operation.UPLOAD, Operation.MANAGE, Operation.DELETE)
        }

    def list_access(self, db: Session, folder_id: int) -> Dict[str, Any]:
        """Read-only projection of a folder's access lists and file grants"""
        folder = self.store.get_folder(db, folder_id)
        shared_files = [
            {
                "file_id": file.id,
                "file_name": file.name,
                "shared_with": list(file.shared_with),
            }
            for file in self.store.list_files(db, folder.id)
            if file.shared_with
        ]
        return {
            "folder_id": folder.id,
            "owner": folder.created_by,
            "department": folder.department,
            "is_public": folder.is_public,
            "version": folder.version,
            "allowed_departments": list(folder.allowed_departments or []),
            "allowed_users": list(folder.allowed_users or []),
            "denied_users": list(folder.denied_users or []),
            "shared_files": shared_files,
        }

    def list_visible_folders(self, db: Session, actor: Actor, department: Optional[str] = None) -> List[Any]:
        return [
            folder for folder in self.store.list_folders(db, department)
            if self.policy.decide(actor, folder, Operation.VIEW)
        ]

    def record(
        self,
        db: Session,
        action: ActivityAction,
        user_id: int,
        folder_id: Optional[int] = None,
        file_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Best-effort audit entry for a completed upload/download/delete/share/view"""
        folder = self.store.get_folder(db, folder_id, include_deleted=True) if folder_id is not None else None
        file = self.store.get_file(db, file_id, include_deleted=True) if file_id is not None else None
        return self.ledger.append(db, action, user_id, folder=folder, file=file, details=details)


access_service = AccessService()

import logging
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session
from app.core.enums import ActivityAction, Department
from app.models.file import File
from app.models.folder import Folder
from app.services.access_policy import Actor
from app.services.activity_ledger import activity_ledger
from app.services.directory_service import SqlDirectoryService
from app.services.resource_store import resource_store

logger = logging.getLogger(__name__)

DEFAULT_FOLDERS = [
    {
        "name": "Company Shared",
        "description": "Organization-wide resources and announcements",
        "department": Department.COMPANY.value,
        "is_public": True,
    },
    {
        "name": "Finance Department",
        "description": "Financial documents and reports",
        "department": Department.FINANCE.value,
        "is_public": False,
    },
    {
        "name": "HR Department",
        "description": "Human Resources documents",
        "department": Department.HR_ADMIN.value,
        "is_public": False,
    },
]


class FolderService:
    @staticmethod
    def create_folder(
        db: Session,
        actor: Actor,
        name: str,
        description: str,
        department: str,
        is_public: bool = False,
        allowed_departments: Optional[Iterable[str]] = None,
        allowed_users: Optional[Iterable[int]] = None,
    ) -> Folder:
        folder = resource_store.create_folder(
            db, actor, name, description, department,
            is_public=is_public,
            allowed_departments=allowed_departments,
            allowed_users=allowed_users,
        )
        activity_ledger.append(
            db, ActivityAction.FOLDER_CREATE, actor.id, folder=folder,
            details={"department": folder.department, "is_public": folder.is_public},
        )
        return folder

    @staticmethod
    def delete_folder(db: Session, actor: Actor, folder: Folder, cascade: bool = False) -> List[File]:
        cascaded = resource_store.soft_delete_folder(db, folder, actor, cascade=cascade)
        activity_ledger.append(
            db, ActivityAction.DELETE, actor.id, folder=folder,
            details={"resource": "folder", "cascade": cascade, "cascaded_files": len(cascaded)},
        )
        for file in cascaded:
            activity_ledger.append(
                db, ActivityAction.DELETE, actor.id, folder=folder, file=file,
                details={"resource": "file", "cascade": True},
            )
        return cascaded


def seed_default_folders(db: Session) -> int:
    """
    Create the default folders if they are missing (keyed by name).

    Owned by the first active admin; does nothing when there is none yet.
    Safe to run on every startup.
    """
    admin = SqlDirectoryService(db).find_admin()
    if admin is None:
        logger.warning("No admin user found. Skipping default folder creation.")
        return 0

    created = 0
    for folder_data in DEFAULT_FOLDERS:
        if resource_store.get_folder_by_name(db, folder_data["name"]) is not None:
            continue
        FolderService.create_folder(db, admin, **folder_data)
        created += 1
        logger.info(f"Created default folder: {folder_data['name']}")
    return created


folder_service = FolderService()

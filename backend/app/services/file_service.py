import logging
from typing import List, Optional
from fastapi import UploadFile
from sqlalchemy.orm import Session
from app.core.enums import ActivityAction, Operation
from app.models.file import File
from app.models.folder import Folder
from app.services.access_policy import Actor, access_policy
from app.services.activity_ledger import activity_ledger
from app.services.resource_store import resource_store
from app.storage.local_storage import storage

logger = logging.getLogger(__name__)


class FileService:
    """
    File operations performed after the caller has been authorized.

    Each method commits its change first and then writes a best-effort
    activity entry; a failed audit write never undoes the user's action.
    """

    @staticmethod
    async def upload_file(
        db: Session,
        actor: Actor,
        folder: Folder,
        upload: UploadFile,
        description: Optional[str] = None,
    ) -> File:
        """Store the bytes and create the file record"""
        file_path, stored_name, size = await storage.save_file(upload, folder.id)
        try:
            db_file = resource_store.add_file(
                db,
                folder,
                actor,
                name=upload.filename or stored_name,
                size=size,
                path=file_path,
                mimetype=upload.content_type,
                public_id=stored_name,
            )
        except Exception:
            # Don't leave orphaned bytes behind a failed insert
            storage.delete_path(file_path)
            raise

        details = {"size": size, "mimetype": db_file.mimetype}
        if description:
            details["description"] = description
        activity_ledger.append(db, ActivityAction.UPLOAD, actor.id, folder=folder, file=db_file, details=details)
        return db_file

    @staticmethod
    async def add_version(db: Session, actor: Actor, file: File, upload: UploadFile) -> File:
        """Upload new content for an existing file, keeping the old one as a version"""
        file_path, stored_name, size = await storage.save_file(upload, file.folder_id)
        try:
            resource_store.add_version(
                db, file, actor,
                storage_ref=file_path,
                size=size,
                mimetype=upload.content_type,
                public_id=stored_name,
            )
        except Exception:
            storage.delete_path(file_path)
            raise
        activity_ledger.append(
            db, ActivityAction.VERSION_CREATE, actor.id, file=file,
            details={"version_number": len(file.versions), "size": size},
        )
        return file

    @staticmethod
    def restore_version(db: Session, actor: Actor, file: File, index: int) -> File:
        file, restored = resource_store.restore_version(db, file, actor, index)
        activity_ledger.append(
            db, ActivityAction.VERSION_RESTORE, actor.id, file=file,
            details={"restored_version": restored["version_number"]},
        )
        return file

    @staticmethod
    def record_download(db: Session, actor: Actor, file: File, ip_address: Optional[str] = None) -> None:
        resource_store.record_download(db, file, actor, ip_address)
        activity_ledger.append(
            db, ActivityAction.DOWNLOAD, actor.id, file=file,
            details={"ip_address": ip_address},
        )

    @staticmethod
    def delete_file(db: Session, actor: Actor, file: File, expected_version: Optional[int] = None) -> File:
        """Soft delete - history and bytes are kept for audit"""
        resource_store.soft_delete_file(db, file, actor, expected_version)
        activity_ledger.append(
            db, ActivityAction.DELETE, actor.id, file=file, details={"resource": "file"})
        logger.info(f"User {actor.id} deleted file {file.id}")
        return file

    @staticmethod
    def list_visible_files(db: Session, actor: Actor, folder: Folder) -> List[File]:
        """All active files when the folder is visible, otherwise only those shared with the actor"""
        files = resource_store.list_files(db, folder.id)
        if access_policy.decide(actor, folder, Operation.VIEW):
            return files
        return [f for f in files if access_policy.decide(actor, folder, Operation.VIEW, file=f)]


file_service = FileService()

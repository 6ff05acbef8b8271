"""
Resource store - persistence for folders and files.

Folder and File rows carry a version column (SQLAlchemy version_id_col), so
every ORM update is conditioned on the version that was loaded. A collision
surfaces as StaleDataError and is translated to ConflictError; nothing is
ever silently overwritten.

Aggregates (file_count, total_size) are updated with plain SQL UPDATEs that
do not bump the version: they are advisory, may race, and can always be
rebuilt from a scan of the folder's active files.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.enums import parse_department
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.file import File, FileDownload
from app.models.folder import Folder
from app.services.access_policy import Actor

logger = logging.getLogger(__name__)

FOLDER_NAME_MAX = 100
FOLDER_DESCRIPTION_MAX = 500
FILE_NAME_MAX = 255


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamped(column, delta: int):
    # Aggregates must never go negative, even after a missed increment
    return case((column + delta < 0, 0), else_=column + delta)


class ResourceStore:
    # ---------- loading ----------

    def get_folder(self, db: Session, folder_id: int, include_deleted: bool = False) -> Folder:
        folder = db.get(Folder, folder_id)
        if folder is None or (folder.is_deleted and not include_deleted):
            raise NotFoundError(f"Folder {folder_id} not found")
        return folder

    def get_folder_by_name(self, db: Session, name: str) -> Optional[Folder]:
        return db.query(Folder).filter(Folder.name == name).first()

    def list_folders(self, db: Session, department: Optional[str] = None) -> List[Folder]:
        query = db.query(Folder).filter(Folder.is_deleted.is_(False))
        if department:
            query = query.filter(Folder.department == parse_department(department).value)
        return query.order_by(Folder.name).all()

    def get_file(self, db: Session, file_id: int, include_deleted: bool = False) -> File:
        file = db.get(File, file_id)
        if file is None or (file.is_deleted and not include_deleted):
            raise NotFoundError(f"File {file_id} not found")
        return file

    def list_files(self, db: Session, folder_id: int) -> List[File]:
        return (
            db.query(File)
            .filter(File.folder_id == folder_id, File.is_deleted.is_(False))
            .order_by(File.uploaded_at.desc(), File.id.desc())
            .all()
        )

    # ---------- concurrency ----------

    @staticmethod
    def check_version(resource, expected_version: Optional[int]) -> None:
        """Reject a change that was prepared against an older snapshot"""
        if expected_version is not None and resource.version != expected_version:
            raise ConflictError(
                f"{type(resource).__name__} {resource.id} changed since it was read "
                f"(expected version {expected_version}, found {resource.version})"
            )

    def flush(self, db: Session) -> None:
        try:
            db.flush()
        except StaleDataError as e:
            db.rollback()
            logger.warning(f"Optimistic concurrency conflict on flush: {e}")
            raise ConflictError("Resource was modified concurrently; reload and retry") from e
        except IntegrityError as e:
            db.rollback()
            raise ConflictError("Change collides with an existing resource (duplicate name?)") from e

    def commit(self, db: Session) -> None:
        try:
            db.commit()
        except StaleDataError as e:
            db.rollback()
            logger.warning(f"Optimistic concurrency conflict on commit: {e}")
            raise ConflictError("Resource was modified concurrently; reload and retry") from e
        except IntegrityError as e:
            db.rollback()
            raise ConflictError("Change collides with an existing resource (duplicate name?)") from e

    # ---------- validation ----------

    @staticmethod
    def clean_folder_name(name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name or len(name) > FOLDER_NAME_MAX:
            raise ValidationError(f"Folder name must be 1-{FOLDER_NAME_MAX} characters")
        return name

    @staticmethod
    def clean_description(description: Optional[str]) -> str:
        description = description or ""
        if len(description) > FOLDER_DESCRIPTION_MAX:
            raise ValidationError(f"Description must be at most {FOLDER_DESCRIPTION_MAX} characters")
        return description

    def ensure_name_available(self, db: Session, name: str, folder_id: Optional[int] = None) -> None:
        """Folder names are unique, soft-deleted folders included"""
        existing = self.get_folder_by_name(db, name)
        if existing is not None and existing.id != folder_id:
            raise ConflictError(f"Folder with name '{name}' already exists")

    # ---------- folders ----------

    def create_folder(
        self,
        db: Session,
        creator: Actor,
        name: str,
        description: str,
        department: str,
        is_public: bool = False,
        allowed_departments: Optional[Iterable[str]] = None,
        allowed_users: Optional[Iterable[int]] = None,
    ) -> Folder:
        name = self.clean_folder_name(name)
        description = self.clean_description(description)
        dept = parse_department(department)

        if allowed_departments:
            departments = unique(parse_department(d).value for d in allowed_departments)
        else:
            departments = [dept.value]
        # Creator is seeded into the allow-list so they can see what they own
        users = unique([creator.id, *(allowed_users or [])])

        self.ensure_name_available(db, name)

        folder = Folder(
            name=name,
            description=description,
            department=dept.value,
            is_public=bool(is_public),
            created_by=creator.id,
            allowed_departments=departments,
            allowed_users=users,
            denied_users=[],
            file_count=0,
            total_size=0,
            last_modified=utcnow(),
        )
        db.add(folder)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise ConflictError(f"Folder with name '{name}' already exists") from e
        db.refresh(folder)
        logger.info(f"Created folder '{folder.name}' (ID: {folder.id}) for user {creator.id}")
        return folder

    def soft_delete_folder(self, db: Session, folder: Folder, actor: Actor, cascade: bool = False) -> List[File]:
        """Soft-delete a folder; with cascade, its active files go first"""
        active_files = self.list_files(db, folder.id)
        if active_files and not cascade:
            raise ValidationError(
                f"Folder has {len(active_files)} active file(s); delete them first or cascade"
            )

        now = utcnow()
        for file in active_files:
            file.is_deleted = True
            file.deleted_at = now
            file.deleted_by = actor.id
        folder.is_deleted = True
        folder.deleted_at = now
        folder.deleted_by = actor.id
        folder.file_count = 0
        folder.total_size = 0
        folder.last_modified = now
        self.commit(db)
        logger.info(f"Soft-deleted folder {folder.id} ({len(active_files)} file(s) cascaded)")
        return active_files

    # ---------- files ----------

    def add_file(
        self,
        db: Session,
        folder: Folder,
        uploader: Actor,
        name: str,
        size: int,
        path: str,
        mimetype: Optional[str] = None,
        public_id: Optional[str] = None,
    ) -> File:
        name = (name or "").strip()
        if not name or len(name) > FILE_NAME_MAX:
            raise ValidationError(f"File name must be 1-{FILE_NAME_MAX} characters")
        if size < 0:
            raise ValidationError("File size cannot be negative")

        used = self.active_size(db, folder.id)
        if used + size > settings.MAX_FOLDER_STORAGE:
            raise ValidationError("Storage quota exceeded for this folder")

        file = File(
            folder_id=folder.id,
            name=name,
            mimetype=mimetype or "application/octet-stream",
            size=size,
            path=path,
            public_id=public_id,
            uploaded_by=uploader.id,
            uploaded_at=utcnow(),
            shared_with=[],
            versions=[],
            downloads=0,
        )
        db.add(file)
        self.flush(db)
        self._adjust_aggregates(db, folder.id, 1, size)
        self.commit(db)
        db.refresh(file)
        return file

    def soft_delete_file(self, db: Session, file: File, actor: Actor, expected_version: Optional[int] = None) -> File:
        self.check_version(file, expected_version)
        file.is_deleted = True
        file.deleted_at = utcnow()
        file.deleted_by = actor.id
        self.flush(db)
        self._adjust_aggregates(db, file.folder_id, -1, -file.size)
        self.commit(db)
        return file

    def add_version(
        self,
        db: Session,
        file: File,
        actor: Actor,
        storage_ref: str,
        size: int,
        mimetype: Optional[str] = None,
        public_id: Optional[str] = None,
    ) -> File:
        """Snapshot the current content into versions and install the new upload"""
        old_size = file.size
        file.versions = [*(file.versions or []), self._snapshot(file)]
        file.path = storage_ref
        file.size = size
        file.mimetype = mimetype or file.mimetype
        file.public_id = public_id
        file.revised_by = actor.id
        file.revised_at = utcnow()
        self.flush(db)
        self._adjust_aggregates(db, file.folder_id, 0, size - old_size)
        self.commit(db)
        return file

    def restore_version(self, db: Session, file: File, actor: Actor, index: int) -> Tuple[File, dict]:
        versions = list(file.versions or [])
        if index < 0 or index >= len(versions):
            raise NotFoundError(f"Version {index} not found for file {file.id}")
        restored = versions[index]

        old_size = file.size
        file.versions = [*versions, self._snapshot(file)]
        file.path = restored["storage_ref"]
        file.size = restored["size"]
        file.mimetype = restored.get("mimetype") or file.mimetype
        file.revised_by = actor.id
        file.revised_at = utcnow()
        self.flush(db)
        self._adjust_aggregates(db, file.folder_id, 0, file.size - old_size)
        self.commit(db)
        return file, restored

    @staticmethod
    def _snapshot(file: File) -> dict:
        uploaded_at = file.revised_at or file.uploaded_at
        return {
            "version_number": len(file.versions or []) + 1,
            "storage_ref": file.path,
            "size": file.size,
            "mimetype": file.mimetype,
            "uploaded_by": file.revised_by or file.uploaded_by,
            "uploaded_at": uploaded_at.isoformat() if uploaded_at else None,
        }

    def record_download(self, db: Session, file: File, actor: Actor, ip_address: Optional[str] = None) -> FileDownload:
        """Append a download log row and bump the counter atomically"""
        row = FileDownload(
            file_id=file.id,
            user_id=actor.id,
            downloaded_at=utcnow(),
            ip_address=ip_address,
        )
        db.add(row)
        db.execute(
            update(File)
            .where(File.id == file.id)
            .values(downloads=File.downloads + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return row

    # ---------- aggregates ----------

    def active_size(self, db: Session, folder_id: int) -> int:
        total = (
            db.query(func.coalesce(func.sum(File.size), 0))
            .filter(File.folder_id == folder_id, File.is_deleted.is_(False))
            .scalar()
        )
        return int(total or 0)

    def _adjust_aggregates(self, db: Session, folder_id: int, count_delta: int, size_delta: int) -> None:
        db.execute(
            update(Folder)
            .where(Folder.id == folder_id)
            .values(
                file_count=_clamped(Folder.file_count, count_delta),
                total_size=_clamped(Folder.total_size, size_delta),
                last_modified=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    def recompute_aggregates(self, db: Session, folder_id: int) -> Tuple[int, int]:
        """Rebuild file_count/total_size from a scan of active files"""
        count, total = (
            db.query(func.count(File.id), func.coalesce(func.sum(File.size), 0))
            .filter(File.folder_id == folder_id, File.is_deleted.is_(False))
            .one()
        )
        db.execute(
            update(Folder)
            .where(Folder.id == folder_id)
            .values(file_count=count, total_size=total)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return int(count), int(total)

    def recompute_all_aggregates(self, db: Session) -> int:
        """Repair every active folder; returns how many were out of sync"""
        repaired = 0
        folders = db.query(Folder.id, Folder.file_count, Folder.total_size).filter(
            Folder.is_deleted.is_(False)).all()
        for folder_id, file_count, total_size in folders:
            count, total = self.recompute_aggregates(db, folder_id)
            if (count, total) != (file_count, total_size):
                repaired += 1
                logger.info(
                    f"Repaired aggregates for folder {folder_id}: "
                    f"{file_count}/{total_size} -> {count}/{total}"
                )
        return repaired


def unique(values: Iterable) -> list:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


resource_store = ResourceStore()

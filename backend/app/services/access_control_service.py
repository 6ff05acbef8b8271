"""
Access-control mutator.

The only code path that changes a folder's allow/deny lists or a file's
sharedWith grants. Each operation re-checks the caller with the policy
evaluator, applies the change and stages its audit entries in the same
transaction. If the audit write fails the whole transaction is rolled back,
so a permission change is never visible without its ledger entry.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.enums import ActivityAction, Operation, Role, ShareAccessType, parse_department
from app.core.exceptions import LedgerWriteFailure, NotFoundError, ValidationError
from app.models.file import File
from app.models.folder import Folder
from app.services.access_policy import AccessPolicy, Actor, Decision, access_policy
from app.services.activity_ledger import ActivityLedger, activity_ledger
from app.services.directory_service import DirectoryService, SqlDirectoryService
from app.services.resource_store import ResourceStore, resource_store, unique

logger = logging.getLogger(__name__)

# (action, target_user_id, details) staged alongside a mutation
LedgerEntry = Tuple[ActivityAction, Optional[int], dict]


class AccessControlService:
    def __init__(
        self,
        policy: AccessPolicy = access_policy,
        ledger: ActivityLedger = activity_ledger,
        store: ResourceStore = resource_store,
    ):
        self.policy = policy
        self.ledger = ledger
        self.store = store

    # ---------- folder access lists ----------

    def grant_access(
        self,
        db: Session,
        actor: Actor,
        folder_id: int,
        departments: Iterable[str] = (),
        user_ids: Iterable[int] = (),
        expected_version: Optional[int] = None,
        directory: Optional[DirectoryService] = None,
    ) -> Decision:
        """Add departments and/or users to a folder's allow-lists"""
        new_departments = [parse_department(d).value for d in departments]
        new_users = list(user_ids)
        if not new_departments and not new_users:
            raise ValidationError("Grant must name at least one department or user")

        folder = self.store.get_folder(db, folder_id)
        decision = self.policy.decide(actor, folder, Operation.MANAGE)
        if not decision:
            return decision

        directory = directory or SqlDirectoryService(db)
        for user_id in new_users:
            directory.resolve_actor(user_id)
            if user_id in (folder.denied_users or []):
                raise ValidationError(f"User {user_id} is blocked from this folder; unblock first")

        added_departments = [d for d in unique(new_departments) if d not in (folder.allowed_departments or [])]
        added_users = [u for u in unique(new_users) if u not in (folder.allowed_users or [])]
        if not added_departments and not added_users:
            return decision

        def mutate():
            folder.allowed_departments = [*(folder.allowed_departments or []), *added_departments]
            folder.allowed_users = [*(folder.allowed_users or []), *added_users]

        entries = [
            (ActivityAction.ACCESS_GRANTED, None,
             {"target_type": "department", "target": d, "mode": "grant"})
            for d in added_departments
        ] + [
            (ActivityAction.ACCESS_GRANTED, u,
             {"target_type": "user", "target": str(u), "mode": "grant"})
            for u in added_users
        ]
        self._apply(db, actor, folder, None, expected_version, mutate, entries)
        return decision

    def revoke_access(
        self,
        db: Session,
        actor: Actor,
        folder_id: int,
        departments: Iterable[str] = (),
        user_ids: Iterable[int] = (),
        expected_version: Optional[int] = None,
    ) -> Decision:
        """
        Remove departments and/or users from a folder's allow-lists.

        File-level sharedWith grants are independent and are left untouched.
        """
        removed_departments = [parse_department(d).value for d in departments]
        removed_users = list(user_ids)
        if not removed_departments and not removed_users:
            raise ValidationError("Revoke must name at least one department or user")

        folder = self.store.get_folder(db, folder_id)
        decision = self.policy.decide(actor, folder, Operation.MANAGE)
        if not decision:
            return decision

        removed_departments = [d for d in unique(removed_departments) if d in (folder.allowed_departments or [])]
        removed_users = [u for u in unique(removed_users) if u in (folder.allowed_users or [])]
        if not removed_departments and not removed_users:
            return decision

        def mutate():
            folder.allowed_departments = [
                d for d in folder.allowed_departments if d not in removed_departments]
            folder.allowed_users = [u for u in folder.allowed_users if u not in removed_users]

        entries = [
            (ActivityAction.ACCESS_REVOKED, None,
             {"target_type": "department", "target": d, "mode": "revoke"})
            for d in removed_departments
        ] + [
            (ActivityAction.ACCESS_REVOKED, u,
             {"target_type": "user", "target": str(u), "mode": "revoke"})
            for u in removed_users
        ]
        self._apply(db, actor, folder, None, expected_version, mutate, entries)
        return decision

    def block_user(
        self,
        db: Session,
        actor: Actor,
        folder_id: int,
        target_user_id: int,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        directory: Optional[DirectoryService] = None,
    ) -> Decision:
        """Put a user on the folder's deny-list, removing any allow-list entry"""
        folder = self.store.get_folder(db, folder_id)
        decision = self.policy.decide(actor, folder, Operation.BLOCK, target_user_id=target_user_id)
        if not decision:
            return decision

        target = (directory or SqlDirectoryService(db)).resolve_actor(target_user_id)
        if target.id == folder.created_by:
            raise ValidationError("Cannot block the folder owner")
        if target.role == Role.ADMIN:
            raise ValidationError("Administrators cannot be blocked")
        if target.id in (folder.denied_users or []):
            raise ValidationError("User is already blocked")

        def mutate():
            # Deny and allow for the same user never coexist in storage
            folder.allowed_users = [u for u in (folder.allowed_users or []) if u != target.id]
            folder.denied_users = [*(folder.denied_users or []), target.id]

        details = {"target_type": "user", "target": str(target.id), "mode": "block"}
        if reason:
            details["reason"] = reason
        self._apply(db, actor, folder, None, expected_version, mutate,
                    [(ActivityAction.ACCESS_REVOKED, target.id, details)])
        return decision

    def unblock_user(
        self,
        db: Session,
        actor: Actor,
        folder_id: int,
        target_user_id: int,
        expected_version: Optional[int] = None,
    ) -> Decision:
        folder = self.store.get_folder(db, folder_id)
        decision = self.policy.decide(actor, folder, Operation.BLOCK, target_user_id=target_user_id)
        if not decision:
            return decision
        if target_user_id not in (folder.denied_users or []):
            raise NotFoundError("User is not blocked")

        def mutate():
            folder.denied_users = [u for u in folder.denied_users if u != target_user_id]

        self._apply(db, actor, folder, None, expected_version, mutate, [
            (ActivityAction.ACCESS_GRANTED, target_user_id,
             {"target_type": "user", "target": str(target_user_id), "mode": "unblock"}),
        ])
        return decision

    def update_folder(
        self,
        db: Session,
        actor: Actor,
        folder_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_public: Optional[bool] = None,
        allowed_departments: Optional[Iterable[str]] = None,
        expected_version: Optional[int] = None,
    ) -> Decision:
        """
        Edit folder metadata under Manage.

        Fields left as None are unchanged. allowed_departments replaces the
        list wholesale. Visibility changes (is_public, departments added or
        removed) are audited like grants; renames and description edits are
        not access changes and only bump the version.
        """
        if name is not None:
            name = self.store.clean_folder_name(name)
        if description is not None:
            description = self.store.clean_description(description)
        departments = None
        if allowed_departments is not None:
            departments = unique(parse_department(d).value for d in allowed_departments)

        folder = self.store.get_folder(db, folder_id)
        decision = self.policy.decide(actor, folder, Operation.MANAGE)
        if not decision:
            return decision

        if name is not None and name != folder.name:
            self.store.ensure_name_available(db, name, folder.id)

        current = list(folder.allowed_departments or [])
        added = [d for d in departments if d not in current] if departments is not None else []
        removed = [d for d in current if d not in departments] if departments is not None else []

        entries: List[LedgerEntry] = []
        if is_public is not None and bool(is_public) != folder.is_public:
            if is_public:
                entries.append((ActivityAction.ACCESS_GRANTED, None,
                                {"target_type": "public", "target": "everyone", "mode": "publish"}))
            else:
                entries.append((ActivityAction.ACCESS_REVOKED, None,
                                {"target_type": "public", "target": "everyone", "mode": "unpublish"}))
        entries += [
            (ActivityAction.ACCESS_GRANTED, None,
             {"target_type": "department", "target": d, "mode": "grant"})
            for d in added
        ] + [
            (ActivityAction.ACCESS_REVOKED, None,
             {"target_type": "department", "target": d, "mode": "revoke"})
            for d in removed
        ]

        def mutate():
            if name is not None:
                folder.name = name
            if description is not None:
                folder.description = description
            if is_public is not None:
                folder.is_public = bool(is_public)
            if departments is not None and (added or removed):
                folder.allowed_departments = departments
            folder.last_modified = datetime.now(timezone.utc)

        self._apply(db, actor, folder, None, expected_version, mutate, entries)
        return decision

    # ---------- file sharing ----------

    def share_file(
        self,
        db: Session,
        actor: Actor,
        file_id: int,
        user_id: Optional[int] = None,
        department: Optional[str] = None,
        access_type: str = ShareAccessType.DOWNLOAD.value,
        expected_version: Optional[int] = None,
        directory: Optional[DirectoryService] = None,
    ) -> Decision:
        """Add (or update) a sharedWith grant for one user or one department"""
        target_type, target = _share_target(user_id, department)
        try:
            access = ShareAccessType(access_type)
        except ValueError:
            raise ValidationError(f"Invalid access type '{access_type}'. Allowed: view, download, edit")

        file = self.store.get_file(db, file_id)
        folder = self.store.get_folder(db, file.folder_id)
        decision = self.policy.decide(actor, folder, Operation.MANAGE, file=file)
        if not decision:
            return decision

        if target_type == "user":
            (directory or SqlDirectoryService(db)).resolve_actor(target)

        key = "user_id" if target_type == "user" else "department"

        def mutate():
            grants = []
            updated = False
            for grant in file.shared_with or []:
                if grant.get(key) == target:
                    grant = {**grant, "access_type": access.value}
                    updated = True
                grants.append(grant)
            if not updated:
                grants.append({
                    key: target,
                    "access_type": access.value,
                    "shared_at": datetime.now(timezone.utc).isoformat(),
                    "shared_by": actor.id,
                })
            file.shared_with = grants

        self._apply(db, actor, folder, file, expected_version, mutate, [
            (ActivityAction.SHARE, target if target_type == "user" else None,
             {"target_type": target_type, "target": str(target), "access_type": access.value}),
        ])
        return decision

    def unshare_file(
        self,
        db: Session,
        actor: Actor,
        file_id: int,
        user_id: Optional[int] = None,
        department: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Decision:
        target_type, target = _share_target(user_id, department)
        file = self.store.get_file(db, file_id)
        folder = self.store.get_folder(db, file.folder_id)
        decision = self.policy.decide(actor, folder, Operation.MANAGE, file=file)
        if not decision:
            return decision

        key = "user_id" if target_type == "user" else "department"
        remaining = [g for g in (file.shared_with or []) if g.get(key) != target]
        if len(remaining) == len(file.shared_with or []):
            raise NotFoundError("File is not shared with that target")

        def mutate():
            file.shared_with = remaining

        self._apply(db, actor, folder, file, expected_version, mutate, [
            (ActivityAction.ACCESS_REVOKED, target if target_type == "user" else None,
             {"target_type": target_type, "target": str(target), "mode": "unshare"}),
        ])
        return decision

    # ---------- transaction ----------

    def _apply(
        self,
        db: Session,
        actor: Actor,
        folder: Folder,
        file: Optional[File],
        expected_version: Optional[int],
        mutate: Callable[[], None],
        entries: List[LedgerEntry],
    ) -> None:
        """Apply a mutation and its audit entries as one transaction"""
        self.store.check_version(file if file is not None else folder, expected_version)
        try:
            mutate()
            # Surfaces version conflicts before anything is written to the ledger
            self.store.flush(db)
            for action, target_user_id, details in entries:
                self.ledger.append(
                    db, action, actor.id,
                    folder=folder, file=file,
                    target_user_id=target_user_id,
                    details=details,
                    strict=True,
                )
            self.store.commit(db)
        except LedgerWriteFailure as e:
            db.rollback()
            logger.error(f"Rolled back access change by user {actor.id} on folder {folder.id}: {e.message}")
            raise
        except Exception:
            # Nothing staged by this mutation may outlive the failure
            db.rollback()
            raise
        logger.info(
            f"User {actor.id} applied {', '.join(a.value for a, _, _ in entries) or 'metadata edit'} "
            f"on folder {folder.id}" + (f" file {file.id}" if file is not None else "")
        )


def _share_target(user_id: Optional[int], department: Optional[str]):
    if (user_id is None) == (department is None):
        raise ValidationError("Share target must be exactly one of user_id or department")
    if user_id is not None:
        return "user", user_id
    return "department", parse_department(department).value


access_control_service = AccessControlService()

"""
Access policy evaluator.

decide() is a pure function of the actor, an already-loaded folder snapshot,
an optional file and the requested operation. It never touches the database,
never logs and never raises for an ordinary denial: a denial is a Decision
value carrying a reason code. Rules are evaluated in a fixed order and the
first rule that matches wins.
"""
from dataclasses import dataclass
from typing import Any, List, Optional

from app.core.config import settings
from app.core.enums import Department, DenyReason, Operation, Role, ShareAccessType


@dataclass(frozen=True)
class Actor:
    """Who is asking - resolved fresh from the directory for each decision."""
    id: int
    role: Role
    department: Optional[Department] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    # Which rule granted access (admin, owner, folder, share, department-manager)
    basis: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls, basis: str) -> "Decision":
        return cls(allowed=True, basis=basis)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)


class AccessPolicy:
    def __init__(self, share_grants_bypass_folder: bool = True):
        # When False, a sharedWith grant only counts for users who can
        # already see the folder, i.e. it never widens view access
        self.share_grants_bypass_folder = share_grants_bypass_folder

    def decide(
        self,
        actor: Actor,
        folder: Any,
        operation: Operation,
        file: Any = None,
        target_user_id: Optional[int] = None,
    ) -> Decision:
        self._check_input(actor, operation, target_user_id)
        operation = Operation(operation)

        if actor.role == Role.ADMIN:
            return Decision.allow("admin")

        # Deny is absolute: nothing below can override it
        if actor.id in (folder.denied_users or []):
            return Decision.deny(DenyReason.EXPLICITLY_DENIED)

        if operation in (Operation.MANAGE, Operation.DELETE) and actor.id == folder.created_by:
            return Decision.allow("owner")

        if operation == Operation.VIEW:
            if self.is_folder_eligible(actor, folder):
                return Decision.allow("folder")
            if file is not None and self.share_grants_bypass_folder and self.find_share_grants(actor, file):
                return Decision.allow("share")

        if operation == Operation.UPLOAD:
            # Uploads target the folder itself; a sharee of one file never qualifies
            if file is None and self.is_folder_eligible(actor, folder):
                return Decision.allow("folder")

        if operation in (Operation.MANAGE, Operation.DELETE):
            if self._is_department_manager(actor, folder):
                return Decision.allow("department-manager")
            return Decision.deny(DenyReason.INSUFFICIENT_PRIVILEGE)

        if operation == Operation.BLOCK:
            manage = self.decide(actor, folder, Operation.MANAGE)
            if not manage:
                return manage
            if target_user_id == folder.created_by:
                return Decision.deny(DenyReason.TARGET_IS_OWNER)
            return Decision.allow(manage.basis)

        return Decision.deny(DenyReason.NO_MATCHING_RULE)

    @staticmethod
    def is_folder_eligible(actor: Actor, folder: Any) -> bool:
        """Public, allow-listed user, allowed department or same department"""
        if folder.is_public:
            return True
        if actor.id in (folder.allowed_users or []):
            return True
        if actor.department is None:
            return False
        if actor.department in (folder.allowed_departments or []):
            return True
        return actor.department == folder.department

    @staticmethod
    def find_share_grants(actor: Actor, file: Any) -> List[dict]:
        """Every sharedWith grant naming the actor or their department"""
        grants = []
        for grant in file.shared_with or []:
            if grant.get("user_id") is not None and grant["user_id"] == actor.id:
                grants.append(grant)
            elif (
                grant.get("department") is not None
                and actor.department is not None
                and grant["department"] == actor.department
            ):
                grants.append(grant)
        return grants

    @classmethod
    def share_allows_download(cls, actor: Actor, file: Any) -> bool:
        # The broadest matching grant wins; only view-only grants block downloads
        return any(
            grant.get("access_type") in (ShareAccessType.DOWNLOAD.value, ShareAccessType.EDIT.value)
            for grant in cls.find_share_grants(actor, file)
        )

    @staticmethod
    def _is_department_manager(actor: Actor, folder: Any) -> bool:
        return (
            actor.role == Role.MANAGER
            and actor.department is not None
            and actor.department == folder.department
        )

    @staticmethod
    def _check_input(actor: Actor, operation: Operation, target_user_id: Optional[int]) -> None:
        # Malformed input is a programming error, not a denial
        if actor is None or actor.id is None or actor.role is None:
            raise ValueError("actor must carry an id and a role")
        if not isinstance(actor.role, Role):
            raise TypeError(f"actor.role must be a Role, got {actor.role!r}")
        try:
            operation = Operation(operation)
        except ValueError:
            raise ValueError(f"Unknown operation: {operation!r}")
        if operation == Operation.BLOCK and target_user_id is None:
            raise ValueError("Block decisions require target_user_id")


access_policy = AccessPolicy(share_grants_bypass_folder=settings.SHARE_GRANTS_BYPASS_FOLDER)

from enum import Enum

from app.core.exceptions import ValidationError


class Department(str, Enum):
    """Fixed set of departments a folder can belong to."""
    COMPANY = "Company"
    FINANCE = "Finance"
    HR_ADMIN = "HR & Admin"
    IT = "IT"
    SUPPLY_CHAIN = "Supply Chain"
    TECHNICAL = "Technical"


class Role(str, Enum):
    ADMIN = "admin"
    # Department head - may manage folders of their own department
    MANAGER = "manager"
    EMPLOYEE = "employee"


class Operation(str, Enum):
    VIEW = "view"
    UPLOAD = "upload"
    MANAGE = "manage"
    DELETE = "delete"
    BLOCK = "block"


class DenyReason(str, Enum):
    """Machine-readable denial codes. Never carries list contents."""
    EXPLICITLY_DENIED = "explicitly-denied"
    INSUFFICIENT_PRIVILEGE = "insufficient-privilege"
    TARGET_IS_OWNER = "target-is-owner"
    NO_MATCHING_RULE = "no-matching-rule"


class ShareAccessType(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    EDIT = "edit"


class ActivityAction(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    SHARE = "share"
    VIEW = "view"
    FOLDER_CREATE = "folder_create"
    ACCESS_GRANTED = "access_granted"
    ACCESS_REVOKED = "access_revoked"
    VERSION_CREATE = "version_create"
    VERSION_RESTORE = "version_restore"


def parse_department(value: str) -> Department:
    """Parse a department name, raising ValidationError for unknown values"""
    try:
        return Department(value)
    except ValueError:
        allowed = ", ".join(d.value for d in Department)
        raise ValidationError(f"Unknown department '{value}'. Allowed: {allowed}")

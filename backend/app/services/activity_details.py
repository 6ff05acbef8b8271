"""
Per-action schemas for the activity log ``details`` bag.

Each action registers the shape of its details so the ledger stays
queryable: string keys mapping to primitive values, unknown keys rejected.
"""
from typing import Any, Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from app.core.enums import ActivityAction, ShareAccessType
from app.core.exceptions import ValidationError

_details_registry: Dict[ActivityAction, Type[BaseModel]] = {}


def register_details(action: ActivityAction):
    """Decorator to register the details schema for an action"""
    def decorator(cls: Type[BaseModel]):
        _details_registry[action] = cls
        return cls
    return decorator


def get_details_schema(action: ActivityAction) -> Type[BaseModel] | None:
    return _details_registry.get(ActivityAction(action))


def validate_details(action: ActivityAction, details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate details against the action's schema and return the stored form"""
    schema = get_details_schema(action)
    if schema is None:
        raise ValidationError(f"No details schema registered for action '{action}'")
    try:
        model = schema.model_validate(details or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid details for '{ActivityAction(action).value}': {e.errors()}")
    return model.model_dump(mode="json", exclude_none=True)


class _Details(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


@register_details(ActivityAction.UPLOAD)
class UploadDetails(_Details):
    size: Optional[int] = None
    mimetype: Optional[str] = None
    description: Optional[str] = None


@register_details(ActivityAction.DOWNLOAD)
class DownloadDetails(_Details):
    ip_address: Optional[str] = None


@register_details(ActivityAction.VIEW)
class ViewDetails(_Details):
    pass


@register_details(ActivityAction.DELETE)
class DeleteDetails(_Details):
    resource: Literal["file", "folder"] = "file"
    cascade: bool = False
    cascaded_files: Optional[int] = None


@register_details(ActivityAction.FOLDER_CREATE)
class FolderCreateDetails(_Details):
    department: str
    is_public: bool = False


@register_details(ActivityAction.SHARE)
class ShareDetails(_Details):
    target_type: Literal["user", "department"]
    target: str
    access_type: ShareAccessType


class AccessChangeDetails(_Details):
    # "public" targets everyone: the folder's isPublic flag was switched
    target_type: Literal["user", "department", "public"]
    target: str
    mode: Literal["grant", "revoke", "block", "unblock", "unshare", "publish", "unpublish"]
    reason: Optional[str] = None


@register_details(ActivityAction.ACCESS_GRANTED)
class AccessGrantedDetails(AccessChangeDetails):
    pass


@register_details(ActivityAction.ACCESS_REVOKED)
class AccessRevokedDetails(AccessChangeDetails):
    pass


@register_details(ActivityAction.VERSION_CREATE)
class VersionCreateDetails(_Details):
    version_number: int
    size: Optional[int] = None


@register_details(ActivityAction.VERSION_RESTORE)
class VersionRestoreDetails(_Details):
    restored_version: int

from typing import Optional, Protocol
from sqlalchemy.orm import Session
from app.core.enums import Department, Role
from app.core.exceptions import NotFoundError
from app.models.user import User
from app.services.access_policy import Actor


class DirectoryService(Protocol):
    """Resolves a user id to the role and department used for decisions"""

    def resolve_actor(self, user_id: int) -> Actor:
        ...


class SqlDirectoryService:
    """Directory backed by the users table. Reads fresh on every call."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_actor(self, user_id: int) -> Actor:
        user = self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFoundError(f"User {user_id} not found")
        return actor_from_user(user)

    def find_admin(self) -> Optional[Actor]:
        """First active admin, used as owner for bootstrap folders"""
        user = (
            self.db.query(User)
            .filter(User.role == Role.ADMIN.value, User.is_active.is_(True))
            .order_by(User.id)
            .first()
        )
        return actor_from_user(user) if user else None


def actor_from_user(user: User) -> Actor:
    return Actor(
        id=user.id,
        role=Role(user.role),
        department=Department(user.department) if user.department else None,
    )

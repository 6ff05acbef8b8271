from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.exceptions import NotFoundError
from app.core.security import decode_access_token
from app.services.access_policy import Actor, Decision
from app.services.directory_service import SqlDirectoryService

# Bearer tokens are issued by the identity provider; tokenUrl is only used by Swagger UI
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/token", auto_error=False)


async def get_current_actor(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> Actor:
    """
    Resolve the acting user from the JWT bearer token.

    The token only carries the user id (sub claim). Role and department are
    looked up in the directory on every request, so a department move or a
    role change takes effect immediately.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token is None:
        raise credentials_exception

    payload = decode_access_token(token)
    if payload is None:
        raise credentials_exception

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise credentials_exception

    try:
        user_id: int = int(user_id_str)
    except (ValueError, TypeError):
        raise credentials_exception

    try:
        return SqlDirectoryService(db).resolve_actor(user_id)
    except NotFoundError:
        # Deleted or deactivated after the token was issued
        raise credentials_exception


def require(decision: Decision) -> Decision:
    """Turn a denial into a 403 that only exposes the reason code"""
    if not decision:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"reason": decision.reason.value},
        )
    return decision

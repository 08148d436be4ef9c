import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from medibook.auth import jwt_handler
from medibook.database import SessionLocal
from medibook.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt_handler.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
    finally:
        db.close()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if user.status == "blocked":
        raise HTTPException(status_code=403, detail="Account is blocked")
    return user


def require_roles(*roles: str):
    """Dependency factory: the current user must hold one of ``roles``."""

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        check_role(current_user, *roles)
        return current_user

    return dependency


def check_role(user: User, *roles: str) -> None:
    if user.role not in roles:
        logger.info("User %s with role %s denied; requires one of %s", user.id, user.role, roles)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. Requires role: {', '.join(roles)}.",
        )

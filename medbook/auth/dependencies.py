import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from medbook.auth import jwt_handler
from medbook.database import get_db
from medbook.models.user import User
from medbook.services.availability import Role

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

STAFF_ROLES = frozenset({Role.STAFF, Role.DOCTOR, Role.ADMIN, Role.SUPERADMIN})


def _load_user(token: str, db: Session) -> User:
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    token_organization = payload.get("org")
    if token_organization and token_organization != user.organization_id:
        raise HTTPException(status_code=401, detail="Token organization mismatch")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    return _load_user(credentials.credentials, db)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
    db: Session = Depends(get_db),
) -> User | None:
    if credentials is None:
        return None
    return _load_user(credentials.credentials, db)


def resolve_actor_role(user: User | None) -> Role | None:
    if user is None or not user.role:
        return None
    try:
        return Role(user.role.strip().lower())
    except ValueError:
        logger.warning("User %s has unknown role %r; applying standard booking rules", user.email, user.role)
        return None


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    if resolve_actor_role(current_user) not in STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Only staff members can manage doctor schedules.")
    return current_user

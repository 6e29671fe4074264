# FILE: backend/flocksync/api/endpoints/dependencies.py
# Caller resolution for the administrative endpoints. The role check runs
# before any endpoint body, so a rejected caller never reaches a write.

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from typing import Annotated, Optional
from pymongo.database import Database
import structlog

from ...core.db import get_db
from ...core.config import settings
from ...core.security import decode_token
from ...models.results import ErrorKind
from ...models.user import UserProfile
from ...services import tenant_service

logger = structlog.get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Database = Depends(get_db)
) -> UserProfile:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(token)
    user_id: Optional[str] = payload.get("id") or payload.get("sub")
    if not user_id:
        raise credentials_exception

    user = tenant_service.get_user(db, str(user_id))
    if user is None:
        raise credentials_exception
    return user


def get_current_admin_user(
    current_user: Annotated[UserProfile, Depends(get_current_user)]
) -> UserProfile:
    """
    Validates that the caller holds an administrator role.
    """
    allowed = {role.lower() for role in settings.ADMIN_ROLES}
    if str(current_user.role).lower() not in allowed:
        logger.warning("auth.admin_required", user_id=current_user.id, role=current_user.role,
                       error=ErrorKind.PERMISSION.value)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="The user does not have sufficient privileges."
        )
    return current_user

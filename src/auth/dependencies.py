# src/auth/dependencies.py

from typing import Callable, Optional, Tuple

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.auth_service import decode_user_id, get_active_user
from src.common.database.database import async_session, get_db_session
from src.common.utils.global_messages import GlobalMessages
from src.models.models import StaffRole, User

bearer_scheme = HTTPBearer()

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session)
) -> User:
    """
    Dependency to retrieve the current staff member based on the JWT token provided in the Authorization header.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=GlobalMessages.INVALID_CREDENTIALS,
        headers={"WWW-Authenticate": "Bearer"}
    )
    user_id = decode_user_id(credentials.credentials)
    if user_id is None:
        raise credentials_exception

    user = await get_active_user(db, user_id)
    if user is None:
        raise credentials_exception
    return user


def require_roles(*roles: StaffRole) -> Callable:
    """Dependency factory gating a route to the given staff roles."""
    async def _check_role(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=GlobalMessages.ROLE_NOT_ALLOWED,
            )
        return current_user
    return _check_role


# Screen-level role sets
RECEPTION_ROLES = (StaffRole.RECEPTION, StaffRole.DOCTOR)
MEDICATION_ROLES = (StaffRole.MEDICATION, StaffRole.DOCTOR)
DOCTOR_ROLES = (StaffRole.DOCTOR,)
STAFF_ROLES = (StaffRole.RECEPTION, StaffRole.MEDICATION, StaffRole.DOCTOR)


async def authenticate_token(
    token: Optional[str],
    roles: Tuple[StaffRole, ...],
    session_factory: Callable = async_session,
) -> Optional[User]:
    """Resolve a WebSocket `token` query parameter to an active user holding one of `roles`."""
    if not token:
        return None
    user_id = decode_user_id(token)
    if user_id is None:
        return None
    async with session_factory() as session:
        user = await get_active_user(session, user_id)
    if user is None or user.role not in roles:
        return None
    return user

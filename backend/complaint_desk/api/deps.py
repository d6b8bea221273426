from uuid import UUID
from fastapi import Depends, HTTPException, Query, WebSocketException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import ValidationError

from complaint_desk.db.session import get_db, store_errors
from complaint_desk.core import security
from complaint_desk.core.exceptions import PermissionDeniedError, StoreUnavailableError
from complaint_desk.models.user import UserRole
from complaint_desk.schemas.user import Actor, TokenPayload

reusable_bearer = HTTPBearer(auto_error=False)


class InvalidCredentials(Exception):
    pass


async def resolve_actor(db: AsyncSession, token: str) -> Actor:
    """
    Identity & role provider: verify the token, then look up the caller's role.
    The role always comes from the store, never from the client.
    """
    try:
        payload = security.decode_access_token(token)
        token_data = TokenPayload(**payload)
        user_id = UUID(token_data.sub)
    except (JWTError, ValidationError, TypeError, ValueError):
        raise InvalidCredentials()

    async with store_errors("resolve identity"):
        result = await db.execute(select(UserRole.role).where(UserRole.user_id == user_id))
        role = result.scalar_one_or_none()
    if role is None:
        raise PermissionDeniedError("No role assigned to this account")

    return Actor(user_id=user_id, role=role)


async def get_current_actor(
    db: AsyncSession = Depends(get_db),
    credentials: HTTPAuthorizationCredentials = Depends(reusable_bearer),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return await resolve_actor(db, credentials.credentials)
    except InvalidCredentials:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Could not validate credentials",
        )


async def get_ws_actor(
    token: str = Query(...),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Browsers cannot set headers on WebSocket upgrades, so the token comes
    in the query string.
    """
    try:
        return await resolve_actor(db, token)
    except (InvalidCredentials, PermissionDeniedError):
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Could not validate credentials")
    except StoreUnavailableError as e:
        raise WebSocketException(code=status.WS_1011_INTERNAL_ERROR, reason=e.message)

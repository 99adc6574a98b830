"""Auth dependencies -- dashboard users (JWT bearer) and build workers (agent key)."""

from uuid import UUID

import jwt as pyjwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth import decode_token, verify_agent_key
from app.repos.user_repo import get_user_by_id

_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Extract and validate the current user from the JWT bearer token.

    Returns the user dict from the database.
    Raises 401 if token is missing, invalid, expired, or user not found.
    """
    if credentials is None:
        raise _unauthorized("Missing authentication token")

    try:
        payload = decode_token(credentials.credentials)
    except pyjwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except pyjwt.PyJWTError:
        raise _unauthorized("Invalid authentication token")

    try:
        user_id = UUID(payload.get("sub") or "")
    except ValueError:
        raise _unauthorized("Invalid token payload")

    user = await get_user_by_id(user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user


async def get_worker_or_user(
    x_agent_key: str | None = Header(default=None),
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Accept either a build worker (``X-Agent-Key``) or a signed-in user."""
    if x_agent_key is not None:
        if not verify_agent_key(x_agent_key):
            raise _unauthorized("Invalid agent key")
        return {"id": None, "username": "agent", "role": "agent"}
    return await get_current_user(credentials)


_EDITOR_ROLES = frozenset({"Admin", "Developer"})


async def require_editor(user: dict = Depends(get_current_user)) -> dict:
    """A signed-in user allowed to author pipelines (Admin or Developer)."""
    if user.get("role") not in _EDITOR_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
    return user

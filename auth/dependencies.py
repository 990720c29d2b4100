"""
FastAPI dependencies for authentication.

``get_current_principal`` resolves the bearer token; ``require_role``
wraps it with a role check and is what protected routes depend on.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import verify_token
from auth.models import Principal

_bearer_scheme = HTTPBearer()


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> Principal:
    return verify_token(credentials.credentials)


def require_role(*roles: str) -> Callable[..., Principal]:
    """Dependency factory: 403 unless the principal holds one of *roles*."""

    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return principal

    return _check


def ensure_account_access(principal: Principal, account_key: str) -> None:
    if account_key and not principal.can_access(account_key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No access to this account")

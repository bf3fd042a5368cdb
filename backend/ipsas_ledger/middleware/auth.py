"""Bearer-token authentication for the ledger API.

Tokens are issued by the external identity provider and signed with the
shared ``JWT_SECRET``.  The ledger does not keep a users table: the ``sub``,
``user_id`` and ``role`` claims are trusted as issued.

Provides:
- JWT creation / validation
- ``get_current_user()`` dependency
- ``require_role()`` dependency factory
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from ipsas_ledger.config import settings

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

ADMIN = "admin"
ACCOUNTANT = "accountant"
APPROVER = "approver"
VIEWER = "viewer"

# Roles allowed to maintain entities, funds and the chart of accounts
MAINTAINERS = (ADMIN, ACCOUNTANT)
# Roles allowed to approve, post and reverse transactions
APPROVERS = (ADMIN, APPROVER)


# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------


def create_access_token(data: dict[str, Any], expires_minutes: int | None = None) -> str:
    """Create a signed JWT containing *sub* (username), *role*, and *exp*."""
    to_encode = data.copy()
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRY_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    to_encode.update({"exp": expire})

    if "user_id" in to_encode and not isinstance(to_encode["user_id"], str):
        to_encode["user_id"] = str(to_encode["user_id"])

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


oauth2_scheme = OAuth2PasswordBearer(tokenUrl=settings.AUTH_TOKEN_URL)


# ---------------------------------------------------------------------------
# Current-user dependency
# ---------------------------------------------------------------------------


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    """Decode the JWT and return a dict describing the acting user.

    Raises ``HTTPException(401)`` when the token is invalid, expired or has no
    subject.  The user dict is also stored on ``request.state._audit_user``
    for the read-access audit middleware.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        raise credentials_exception

    username: str | None = payload.get("sub")
    if not username:
        raise credentials_exception

    user = {
        "user_id": str(payload.get("user_id") or username),
        "username": username,
        "role": payload.get("role", VIEWER),
    }

    request.state._audit_user = user
    return user


# ---------------------------------------------------------------------------
# Role-checking dependency factory
# ---------------------------------------------------------------------------


def require_role(*roles: str):
    """Return a FastAPI dependency that ensures the authenticated user holds one
    of the specified *roles*.

    Usage::

        @router.post("/transactions/{transaction_id}/post")
        async def post_transaction(user=Depends(require_role(*APPROVERS))):
            ...
    """
    allowed = set(roles)

    async def _check_role(
        current_user: dict[str, Any] = Depends(get_current_user),
    ) -> dict[str, Any]:
        if current_user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user['role']}' is not permitted. "
                f"Required: {', '.join(sorted(allowed))}.",
            )
        return current_user

    return _check_role

from __future__ import annotations

import time
from typing import Any, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from portal.config import settings
from portal.db import get_user


ROLE_APPLICANT = "applicant"
ROLE_REVIEWER = "reviewer"
ROLE_ADMIN = "admin"
ALL_ROLES = (ROLE_APPLICANT, ROLE_REVIEWER, ROLE_ADMIN)
STAFF_ROLES = (ROLE_REVIEWER, ROLE_ADMIN)

_bearer_scheme = HTTPBearer(auto_error=False)


def _auth_unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _auth_misconfigured(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


def _signing_key() -> str:
    key = str(settings.auth_secret_key or "").strip()
    if not key:
        raise _auth_misconfigured("AUTH_SECRET_KEY is not configured.")
    return key


def create_access_token(user: dict[str, object]) -> str:
    now = int(time.time())
    claims = {
        "sub": str(user["id"]),
        "role": str(user["role"]),
        "iat": now,
        "exp": now + settings.auth_token_ttl_seconds,
    }
    return jwt.encode(claims, _signing_key(), algorithm=settings.auth_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=[settings.auth_algorithm])
    except JWTError as exc:
        raise _auth_unauthorized(f"Invalid or expired token: {exc}") from exc

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise _auth_unauthorized("Token does not include a subject.")
    return claims


def require_authenticated_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict[str, object]:
    if credentials is None:
        raise _auth_unauthorized("Missing bearer token.")
    if credentials.scheme.lower() != "bearer":
        raise _auth_unauthorized("Unsupported authorization scheme.")

    token = credentials.credentials.strip()
    if not token:
        raise _auth_unauthorized("Missing bearer token.")

    claims = decode_access_token(token)
    user = get_user(str(claims["sub"]))
    if user is None:
        raise _auth_unauthorized("Token subject no longer exists.")
    return user


def require_roles(*roles: str) -> Callable[..., dict[str, object]]:
    allowed = set(roles)

    def dependency(user: dict[str, object] = Depends(require_authenticated_user)) -> dict[str, object]:
        if str(user.get("role")) not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role for this action.")
        return user

    return dependency

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from portal.api.contracts import AdminUserCreateRequest, LoginRequest, RegisterRequest
from portal.auth import (
    ROLE_ADMIN,
    ROLE_APPLICANT,
    create_access_token,
    require_authenticated_user,
    require_roles,
)
from portal.db import UserAlreadyExistsError, create_user, get_user_by_email, list_users
from portal.passwords import PasswordHashError, hash_password, verify_password

logger = logging.getLogger("portal.api")


def _create_user_or_conflict(name: str, email: str, password: str, role: str) -> dict[str, object]:
    try:
        user = create_user(name=name, email=email, password_hash=hash_password(password), role=role)
    except UserAlreadyExistsError as exc:
        raise HTTPException(status_code=409, detail="A user with this email already exists.") from exc
    logger.info("user_created", extra={"event": "user_created", "user_id": user["id"], "role": role})
    return user


def build_accounts_router() -> APIRouter:
    router = APIRouter()

    @router.post("/auth/register", status_code=status.HTTP_201_CREATED)
    def register(payload: RegisterRequest) -> dict[str, object]:
        return _create_user_or_conflict(payload.name, payload.email, payload.password, ROLE_APPLICANT)

    @router.post("/auth/login")
    def login(payload: LoginRequest) -> dict[str, object]:
        user = get_user_by_email(payload.email, include_password_hash=True)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid email or password.")

        try:
            valid = verify_password(str(user.pop("password_hash")), payload.password)
        except PasswordHashError:
            logger.error(
                "user_password_hash_invalid",
                extra={"event": "user_password_hash_invalid", "user_id": user["id"]},
            )
            valid = False
        if not valid:
            raise HTTPException(status_code=401, detail="Invalid email or password.")

        return {
            "access_token": create_access_token(user),
            "token_type": "bearer",
            "user": user,
        }

    @router.get("/auth/me")
    def me(user: dict[str, object] = Depends(require_authenticated_user)) -> dict[str, object]:
        return user

    @router.get("/admin/users")
    def list_users_endpoint(_: dict[str, object] = Depends(require_roles(ROLE_ADMIN))) -> dict[str, object]:
        return {"users": list_users()}

    @router.post("/admin/users", status_code=status.HTTP_201_CREATED)
    def create_staff_user(
        payload: AdminUserCreateRequest,
        _: dict[str, object] = Depends(require_roles(ROLE_ADMIN)),
    ) -> dict[str, object]:
        return _create_user_or_conflict(payload.name, payload.email, payload.password, payload.role)

    return router

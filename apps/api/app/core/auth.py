from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from fastapi import Header

from app.core.config import settings
from app.core.errors import Unauthorized


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _build_identity(
    user_id: str | None,
    email: str | None,
    dev_user: str | None = None,
    dev_email: str | None = None,
) -> Identity:
    if settings.auth_mode == "dev":
        user_id = user_id or dev_user
        email = email or dev_email
    if not user_id or not email:
        raise Unauthorized("missing auth headers (X-Forwarded-User, X-Forwarded-Email)")
    return Identity(user_id=user_id.strip(), email=normalize_email(email))


def get_identity(
    x_forwarded_user: str | None = Header(default=None, alias="X-Forwarded-User"),
    x_forwarded_email: str | None = Header(default=None, alias="X-Forwarded-Email"),
    x_dev_user: str | None = Header(default=None, alias="X-Dev-User"),
    x_dev_email: str | None = Header(default=None, alias="X-Dev-Email"),
) -> Identity:
    """
    Auth boundary.

    In prod, requests are expected to be behind Traefik Forward Auth, which injects
    X-Forwarded-User (opaque user id) and X-Forwarded-Email. With AUTH_MODE=dev the
    X-Dev-User / X-Dev-Email headers are accepted as well.
    """
    return _build_identity(x_forwarded_user, x_forwarded_email, x_dev_user, x_dev_email)


def identity_from_headers(headers: Mapping[str, str]) -> Identity:
    return _build_identity(
        headers.get("x-forwarded-user"),
        headers.get("x-forwarded-email"),
        headers.get("x-dev-user"),
        headers.get("x-dev-email"),
    )

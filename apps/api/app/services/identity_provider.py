from __future__ import annotations

from typing import Protocol

import httpx

from app.core.config import settings


class IdentityResolver(Protocol):
    async def resolve_emails(self, user_ids: list[str]) -> dict[str, str]: ...


def _token_url() -> str:
    return f"{settings.keycloak_base_url}/realms/{settings.keycloak_realm}/protocol/openid-connect/token"


def _admin_user_url(user_id: str) -> str:
    return f"{settings.keycloak_base_url}/admin/realms/{settings.keycloak_realm}/users/{user_id}"


def _require_keycloak_config() -> None:
    if not settings.keycloak_client_id or not settings.keycloak_client_secret:
        raise RuntimeError("missing KEYCLOAK_CLIENT_ID / KEYCLOAK_CLIENT_SECRET")


class KeycloakIdentityResolver:
    """Looks up user emails through the Keycloak admin API (client credentials grant)."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def _fetch_admin_token(self, client: httpx.AsyncClient) -> str:
        _require_keycloak_config()
        resp = await client.post(
            _token_url(),
            data={
                "grant_type": "client_credentials",
                "client_id": settings.keycloak_client_id,
                "client_secret": settings.keycloak_client_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        resp.raise_for_status()
        token = resp.json().get("access_token")
        if not token:
            raise RuntimeError("keycloak token response missing access_token")
        return token

    async def resolve_emails(self, user_ids: list[str]) -> dict[str, str]:
        if not user_ids:
            return {}

        resolved: dict[str, str] = {}
        timeout = httpx.Timeout(connect=5.0, read=30.0, write=30.0, pool=5.0)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            token = await self._fetch_admin_token(client)
            for user_id in user_ids:
                resp = await client.get(_admin_user_url(user_id), headers={"Authorization": f"Bearer {token}"})
                if resp.status_code == 404:
                    continue
                resp.raise_for_status()
                email = (resp.json().get("email") or "").strip()
                if email:
                    resolved[user_id] = email.lower()
        return resolved


def get_identity_resolver() -> IdentityResolver:
    return KeycloakIdentityResolver()

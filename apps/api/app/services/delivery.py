"""
Best-effort outbound email delivery.

Dispatchers never raise: every attempt ends in a DeliveryResult that the caller hands
to `record_delivery` for logging. Invitation creation does not depend on the outcome.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Union

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivered:
    attempts: int


@dataclass(frozen=True)
class Failed:
    reason: str
    attempts: int


DeliveryResult = Union[Delivered, Failed]


@dataclass(frozen=True)
class InvitationEmail:
    invitation_id: str
    to: str
    family_name: str
    inviter_email: str
    role: str
    expires_at: datetime

    @property
    def invitation_link(self) -> str:
        return f"{settings.app_base_url.rstrip('/')}/family/invitations/{self.invitation_id}"


class EmailDispatcher(Protocol):
    def send_invitation(self, message: InvitationEmail) -> DeliveryResult: ...


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class LoopsEmailDispatcher:
    """Sends invitation emails through the Loops transactional API with bounded retries."""

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = settings.loops_api_url,
        transactional_id: str = settings.loops_invitation_transactional_id,
        max_attempts: int = settings.email_max_attempts,
        backoff_seconds: float = settings.email_retry_backoff_seconds,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._transactional_id = transactional_id
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._transport = transport

    def _body(self, message: InvitationEmail) -> dict:
        return {
            "transactionalId": self._transactional_id,
            "email": message.to,
            "dataVariables": {
                "inviteName": message.inviter_email,
                "familyName": message.family_name,
                "invitationLink": message.invitation_link,
                "role": message.role,
                "expiresAt": message.expires_at.isoformat(),
            },
        }

    def send_invitation(self, message: InvitationEmail) -> DeliveryResult:
        reason = "not attempted"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        with httpx.Client(timeout=10.0, transport=self._transport) as client:
            for attempt in range(1, self._max_attempts + 1):
                try:
                    resp = client.post(self._api_url, json=self._body(message), headers=headers)
                    resp.raise_for_status()
                    return Delivered(attempts=attempt)
                except httpx.HTTPStatusError as exc:
                    reason = f"loops responded {exc.response.status_code}"
                    if not _is_retryable(exc.response.status_code):
                        return Failed(reason=reason, attempts=attempt)
                except httpx.HTTPError as exc:
                    reason = f"loops request failed: {exc}"
                if attempt < self._max_attempts and self._backoff_seconds > 0:
                    time.sleep(self._backoff_seconds * 2 ** (attempt - 1))
        return Failed(reason=reason, attempts=self._max_attempts)


class LogOnlyEmailDispatcher:
    """Used when no email provider is configured: the email is logged instead of sent."""

    def send_invitation(self, message: InvitationEmail) -> DeliveryResult:
        logger.info(
            "invitation email (not sent) to=%s family=%s role=%s link=%s",
            message.to,
            message.family_name,
            message.role,
            message.invitation_link,
        )
        return Delivered(attempts=0)


def record_delivery(kind: str, recipient: str, result: DeliveryResult) -> None:
    if isinstance(result, Delivered):
        logger.info("%s delivered to=%s attempts=%d", kind, recipient, result.attempts)
    else:
        logger.warning("%s delivery failed to=%s attempts=%d reason=%s", kind, recipient, result.attempts, result.reason)


def send_invitation_email(dispatcher: EmailDispatcher, message: InvitationEmail) -> DeliveryResult:
    try:
        result = dispatcher.send_invitation(message)
    except Exception as exc:
        result = Failed(reason=f"dispatcher error: {exc}", attempts=1)
    record_delivery("invitation email", message.to, result)
    return result


def get_email_dispatcher() -> EmailDispatcher:
    if settings.loops_api_key:
        return LoopsEmailDispatcher(settings.loops_api_key)
    return LogOnlyEmailDispatcher()

"""
Outbound e-mail dispatch.

``HttpEmailDispatcher`` posts to a Resend-compatible HTTP API with up to
``email_max_attempts`` tries (exponential backoff).  When no API key is
configured, ``LoggingDispatcher`` logs the message and reports failure, so
callers treat it exactly like an undelivered e-mail.

Dispatchers never raise: every outcome is a ``DeliveryResult``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from trip_booking.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class NotificationDispatcher(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        ...


class LoggingDispatcher(NotificationDispatcher):
    """Used when e-mail delivery is not configured."""

    async def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        logger.warning("Email not configured; would send %r to %s", subject, to)
        return DeliveryResult(success=False, error="Email service not configured")


class HttpEmailDispatcher(NotificationDispatcher):
    def __init__(
        self,
        *,
        api_url: str,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self._transport = transport

    async def send(self, to: str, subject: str, body: str) -> DeliveryResult:
        error = "unknown error"
        for attempt in range(1, self.max_attempts + 1):
            try:
                message_id = await self._post(to, subject, body)
                logger.info("Email sent: to=%s subject=%r id=%s", to, subject, message_id)
                return DeliveryResult(success=True, message_id=message_id)
            except httpx.HTTPStatusError as e:
                error = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
                # 4xx other than throttling will not get better on retry
                if e.response.status_code < 500 and e.response.status_code != 429:
                    break
            except httpx.HTTPError as e:
                error = str(e) or e.__class__.__name__
            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))

        logger.error("Email to %s failed after %d attempt(s): %s", to, attempt, error)
        return DeliveryResult(success=False, error=error)

    async def _post(self, to: str, subject: str, body: str) -> Optional[str]:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.post(
                f"{self.api_url}/emails",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "text": body},
            )
            resp.raise_for_status()
            try:
                return resp.json().get("id")
            except ValueError:
                return None


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if not settings.email_api_key:
        return LoggingDispatcher()
    return HttpEmailDispatcher(
        api_url=settings.email_api_url,
        api_key=settings.email_api_key,
        sender=settings.email_from,
        timeout=settings.email_timeout_seconds,
        max_attempts=settings.email_max_attempts,
    )

"""
Transactional email client.

Posts messages to the configured email HTTP API (Resend-style JSON body).
When no provider is configured the send is skipped and logged, so local
development and tests never need an email account.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from rest_api.services.circuit_breaker import email_breaker, CircuitBreakerError
from shared.config.logging import get_logger, mask_email
from shared.config.settings import settings
from shared.utils.exceptions import ExternalServiceError

logger = get_logger(__name__)


class EmailClient:
    """HTTP client for the email provider with a pooled AsyncClient."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        sender: str | None = None,
    ):
        self.api_url = api_url if api_url is not None else settings.email_api_url
        self.api_key = api_key if api_key is not None else settings.email_api_key
        self.sender = sender or settings.email_from
        self.timeout = 15.0
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None and not self._client.is_closed:
            return self._client

        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client. Called on application shutdown."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(self, to: str, subject: str, text: str) -> bool:
        """
        Send one email.

        Returns:
            True if the provider accepted it, False if sending is not configured.

        Raises:
            ExternalServiceError: If the provider rejects the request or is unreachable.
        """
        if not self.configured:
            logger.info(
                "Email provider not configured, skipping send",
                to=mask_email(to),
                subject=subject,
            )
            return False

        try:
            async with email_breaker.call():
                client = await self._get_client()
                response = await client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.sender, "to": [to], "subject": subject, "text": text},
                )
                response.raise_for_status()
        except CircuitBreakerError as e:
            raise ExternalServiceError(
                "email", is_unavailable=True, retry_after=int(e.retry_after) or 1
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("email", error=str(e), to=mask_email(to))

        logger.info("Email sent", to=mask_email(to), subject=subject)
        return True


_email_client: EmailClient | None = None


def get_email_client() -> EmailClient:
    """Get the process-wide email client."""
    global _email_client
    if _email_client is None:
        _email_client = EmailClient()
    return _email_client


async def close_email_client() -> None:
    global _email_client
    if _email_client is not None:
        await _email_client.close()
        _email_client = None

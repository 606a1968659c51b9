"""
Payment processor client (Stripe-compatible REST API).

Requests are form-encoded POSTs authenticated with the secret key and go
through the `payments` circuit breaker. Webhook payloads are verified with
the `Stripe-Signature` scheme: `t=<unix ts>,v1=<hex hmac>` where the HMAC
is SHA-256 over `"<ts>.<raw body>"` keyed by the webhook secret.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from typing import Any, Optional

import httpx

from rest_api.services.circuit_breaker import payments_breaker, CircuitBreakerError
from shared.config.logging import payments_logger as logger
from shared.config.settings import settings
from shared.utils.exceptions import ExternalServiceError, WebhookSignatureError


def encode_form(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """
    Flatten nested params into the bracket form the processor expects.

    {"line_items": [{"quantity": 1}]} -> [("line_items[0][quantity]", "1")]
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_name = f"{name}[{index}]"
                if isinstance(item, dict):
                    pairs.extend(encode_form(item, item_name))
                else:
                    pairs.append((item_name, str(item)))
        elif isinstance(value, bool):
            pairs.append((name, "true" if value else "false"))
        else:
            pairs.append((name, str(value)))
    return pairs


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Verify a webhook signature and return the decoded event.

    Raises:
        WebhookSignatureError: Missing secret/header, malformed header,
            stale timestamp, signature mismatch, or a body that is not JSON.
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing webhook signature")

    timestamp: int | None = None
    signatures: list[str] = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("Malformed webhook signature")
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed webhook signature")

    current = now if now is not None else time.time()
    if abs(current - timestamp) > tolerance_seconds:
        raise WebhookSignatureError("Webhook timestamp outside tolerance", timestamp=timestamp)

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        logger.warning("Webhook signature mismatch", received=signatures[0][:8])
        raise WebhookSignatureError()

    try:
        event = json.loads(payload)
    except ValueError:
        raise WebhookSignatureError("Webhook payload is not valid JSON")
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookSignatureError("Webhook payload is not an event")
    return event


class StripeClient:
    """Minimal async client for checkout sessions, refunds and payment intents."""

    def __init__(
        self,
        secret_key: str | None = None,
        api_base: str | None = None,
        webhook_secret: str | None = None,
        webhook_tolerance_seconds: int | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.api_base = (api_base or settings.stripe_api_base).rstrip("/")
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        )
        self.webhook_tolerance_seconds = (
            webhook_tolerance_seconds
            if webhook_tolerance_seconds is not None
            else settings.stripe_webhook_tolerance_seconds
        )
        self.timeout = 20.0
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None and not self._client.is_closed:
            return self._client

        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    base_url=self.api_base,
                    timeout=self.timeout,
                    auth=(self.secret_key, ""),
                    limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            async with payments_breaker.call():
                client = await self._get_client()
                response = await client.request(
                    method,
                    path,
                    data=encode_form(params) if params else None,
                    headers=headers,
                )
                response.raise_for_status()
                return response.json()
        except CircuitBreakerError as e:
            raise ExternalServiceError(
                "payments", is_unavailable=True, retry_after=int(e.retry_after) or 1
            )
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                "payments",
                detail=_processor_message(e.response),
                path=path,
                status=e.response.status_code,
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("payments", path=path, error=str(e))

    async def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create a hosted checkout session; metadata is mirrored on the payment intent."""
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        return await self._request(
            "POST", "/checkout/sessions", params, idempotency_key=idempotency_key
        )

    async def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Refund a payment intent; no amount means a full refund."""
        params = {
            "payment_intent": payment_intent_id,
            "amount": amount_cents,
            "metadata": metadata,
        }
        return await self._request("POST", "/refunds", params)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/payment_intents/{payment_intent_id}")

    def construct_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        return verify_webhook_signature(
            payload,
            signature_header,
            self.webhook_secret,
            self.webhook_tolerance_seconds,
        )


def _processor_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Payment processor error ({response.status_code})"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"Payment processor error ({response.status_code})"


_stripe_client: StripeClient | None = None


def get_stripe_client() -> StripeClient:
    """Get the process-wide payment processor client."""
    global _stripe_client
    if _stripe_client is None:
        _stripe_client = StripeClient()
    return _stripe_client


async def close_stripe_client() -> None:
    global _stripe_client
    if _stripe_client is not None:
        await _stripe_client.close()
        _stripe_client = None

"""Outbound webhook delivery to the upstream business system.

Delivery is at-most-once: a single aiohttp POST with a JSON body, no retry. A
failed delivery is logged and reported as ``False``; it never fails the job that
produced the event. With no ``WEBHOOK_URL`` configured events are only logged.

Event builders live here too so every emitter produces the same shapes.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from app.models.enums import FiatWebhookEventType, X402WebhookEventType
from app.models.schemas.webhooks import WebhookEvent
from app.models.schemas.x402 import X402PaymentJob
from app.utils import get_logger, utc_now

logger = get_logger(__name__)


class WebhookDispatcher:
    def __init__(self, url: Optional[str] = None, timeout_seconds: float = 10.0) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, event: WebhookEvent) -> bool:
        """POST ``event`` once; returns whether the receiver answered 2xx."""
        if not self.url:
            logger.debug("Webhook URL not configured; event not delivered", event_type=event.type, order_id=event.order_id)
            return False
        payload = event.to_wire()
        try:
            delivered = await self._deliver(payload)
        except asyncio.TimeoutError:
            logger.error("Webhook delivery timed out", event_type=event.type, job_id=event.job_id, order_id=event.order_id)
            return False
        except aiohttp.ClientError as e:
            logger.error("Webhook delivery failed", event_type=event.type, job_id=event.job_id, order_id=event.order_id, error=str(e))
            return False
        if delivered:
            logger.info("Webhook delivered", event_type=event.type, job_id=event.job_id, order_id=event.order_id)
        return delivered

    async def _deliver(self, payload: Dict[str, Any]) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.url, json=payload) as resp:
                if 200 <= resp.status < 300:
                    return True
                text = await resp.text()
                logger.warning(
                    "Webhook receiver rejected event",
                    event_type=payload.get("type"),
                    status_code=resp.status,
                    body=text[:500],
                )
                return False


# ------------------------------- Builders -------------------------------- #

def x402_event(event_type: X402WebhookEventType, job: X402PaymentJob, **data: Any) -> WebhookEvent:
    """Crypto-rail event; ``data`` always carries the job's status and amounts."""
    now = utc_now()
    body: Dict[str, Any] = {
        "status": job.status.value,
        "amountUsd": job.amount_usd,
        "amountAtomic": job.amount_atomic,
    }
    if job.tx_hash:
        body["txHash"] = job.tx_hash
    body.update({k: v for k, v in data.items() if v is not None})
    body["timestamp"] = now.isoformat()
    return WebhookEvent(type=event_type.value, job_id=job.job_id, order_id=job.order_id, data=body, timestamp=now)


def qr_generated(order_id: str, qr_image_base64: str) -> WebhookEvent:
    return WebhookEvent(
        type=FiatWebhookEventType.QR_GENERATED.value,
        order_id=order_id,
        data={"qr_image_base64": qr_image_base64},
    )


def verification_result(order_id: str, success: bool) -> WebhookEvent:
    return WebhookEvent(
        type=FiatWebhookEventType.VERIFICATION_RESULT.value,
        order_id=order_id,
        data={"success": success},
    )


def two_factor_required(order_id: Optional[str], message: str) -> WebhookEvent:
    now = utc_now()
    return WebhookEvent(
        type=FiatWebhookEventType.LOGIN_2FA_REQUIRED.value,
        order_id=order_id,
        data={"message": message, "timestamp": now.isoformat()},
        timestamp=now,
    )


__all__ = [
    "WebhookDispatcher",
    "x402_event",
    "qr_generated",
    "verification_result",
    "two_factor_required",
]

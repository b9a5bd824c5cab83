"""Central Enum definitions for payment job states and webhook event types.

These replace scattered string literals so services, schemas and webhooks agree on
the exact wire values.
"""
from __future__ import annotations
import enum


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAYMENT_REQUIRED = "payment_required"
    PAYMENT_RECEIVED = "payment_received"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SETTLING = "settling"
    SETTLED = "settled"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.EXPIRED})


class X402WebhookEventType(str, enum.Enum):
    PAYMENT_REQUIRED = "X402_PAYMENT_REQUIRED"
    PAYMENT_VERIFIED = "X402_PAYMENT_VERIFIED"
    PAYMENT_SETTLED = "X402_PAYMENT_SETTLED"
    PAYMENT_CONFIRMED = "X402_PAYMENT_CONFIRMED"
    PAYMENT_FAILED = "X402_PAYMENT_FAILED"
    PAYMENT_EXPIRED = "X402_PAYMENT_EXPIRED"


class FiatWebhookEventType(str, enum.Enum):
    QR_GENERATED = "QR_GENERATED"
    VERIFICATION_RESULT = "VERIFICATION_RESULT"
    LOGIN_2FA_REQUIRED = "LOGIN_2FA_REQUIRED"


class FiatJobOutcome(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    FIAT_QR = "FIAT_QR"
    X402_CRYPTO = "X402_CRYPTO"
    HYBRID = "HYBRID"


__all__ = [
    "PaymentStatus",
    "TERMINAL_STATUSES",
    "X402WebhookEventType",
    "FiatWebhookEventType",
    "FiatJobOutcome",
    "PaymentMethod",
]

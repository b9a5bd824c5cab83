"""
Pydantic schemas package initialization.
Exports request/response and wire models for both payment rails.
"""
from .base import ErrorResponse
from .x402 import (
    PaymentRequirements,
    ExactEvmAuthorization,
    ExactEvmPayload,
    PaymentPayload,
    VerifyResponse,
    SettleResponse,
    SettlementResponseHeader,
    X402PaymentJob,
    CreateX402PaymentRequest,
    ConfirmX402PaymentRequest,
    PaymentRequiredResponse,
    PaymentOutcome,
    X402PaymentStatusResponse,
    SupportedKind,
    SupportedKindsResponse,
)
from .fiat import (
    GenerateQrRequest,
    VerifyPaymentRequest,
    SetTwoFactorRequest,
    HybridPaymentRequest,
    HybridPaymentResponse,
)
from .webhooks import WebhookEvent

__all__ = [
    "ErrorResponse",
    # x402
    "PaymentRequirements",
    "ExactEvmAuthorization",
    "ExactEvmPayload",
    "PaymentPayload",
    "VerifyResponse",
    "SettleResponse",
    "SettlementResponseHeader",
    "X402PaymentJob",
    "CreateX402PaymentRequest",
    "ConfirmX402PaymentRequest",
    "PaymentRequiredResponse",
    "PaymentOutcome",
    "X402PaymentStatusResponse",
    "SupportedKind",
    "SupportedKindsResponse",
    # fiat / hybrid
    "GenerateQrRequest",
    "VerifyPaymentRequest",
    "SetTwoFactorRequest",
    "HybridPaymentRequest",
    "HybridPaymentResponse",
    # webhooks
    "WebhookEvent",
]

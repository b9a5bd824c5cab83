"""
Pydantic schemas for the bank QR rail and hybrid payments.

Bodies accept camelCase or snake_case keys, and ``glosa`` as an alias of
``details``, matching what upstream callers already send.
"""
from typing import Optional, List, Dict, Any
from pydantic import AliasChoices, Field

from app.models.enums import PaymentMethod
from app.models.schemas.x402 import CamelModel


class GenerateQrRequest(CamelModel):
    order_id: str = Field(min_length=1, description="Identifier used to correlate automation events")
    amount: float = Field(gt=0, allow_inf_nan=False, description="Amount to encode inside the bank QR")
    details: str = Field(
        min_length=1,
        validation_alias=AliasChoices("details", "glosa"),
        description="Glosa/memo used later for verification",
    )


class VerifyPaymentRequest(CamelModel):
    order_id: str = Field(min_length=1)
    details: str = Field(min_length=1, validation_alias=AliasChoices("details", "glosa"))


class SetTwoFactorRequest(CamelModel):
    code: str = Field(min_length=4, max_length=12, description="Current one-time code from the bank token")


class HybridPaymentRequest(CamelModel):
    order_id: str = Field(min_length=1)
    amount: float = Field(gt=0, allow_inf_nan=False, description="Amount in the order currency (USD for x402)")
    details: str = Field(min_length=1, validation_alias=AliasChoices("details", "glosa"))
    payment_method: PaymentMethod = PaymentMethod.HYBRID
    requires_manual_confirmation: Optional[bool] = None


class HybridPaymentResponse(CamelModel):
    status: str = "accepted"
    order_id: str
    available_methods: List[str] = Field(default_factory=list)
    fiat_qr_status: Optional[str] = None
    fiat_qr_error: Optional[str] = None
    x402_job_id: Optional[str] = None
    x402_payment_requirements: Optional[Dict[str, Any]] = None
    x402_error: Optional[str] = None

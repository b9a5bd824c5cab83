"""
Pydantic schemas for the x402 (HTTP 402) payment protocol and crypto payment jobs.

Wire format follows the x402 ``exact`` scheme for EVM networks: the client signs an
EIP-3009 ``transferWithAuthorization`` and sends it base64-encoded in ``X-PAYMENT``.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel

from app.models.enums import PaymentStatus


class CamelModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PaymentRequirements(CamelModel):
    """What the client must pay; returned in the HTTP 402 body."""
    scheme: str
    network: str
    max_amount_required: str = Field(description="Atomic units (6 decimals for USDC)")
    resource: str
    description: str
    mime_type: str = "application/json"
    pay_to: str
    max_timeout_seconds: int
    asset: str
    output_schema: Optional[Dict[str, Any]] = None
    extra: Optional[Dict[str, str]] = Field(None, description="EIP-712 domain name/version")


class ExactEvmAuthorization(CamelModel):
    """EIP-3009 authorization parameters."""
    from_address: str = Field(alias="from")
    to: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str


class ExactEvmPayload(CamelModel):
    authorization: ExactEvmAuthorization
    signature: str


class PaymentPayload(CamelModel):
    """Decoded content of the X-PAYMENT header."""
    x402_version: int = Field(alias="x402Version")
    scheme: str
    network: str
    payload: ExactEvmPayload


class VerifyResponse(CamelModel):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None


class SettleResponse(CamelModel):
    success: bool
    error_reason: Optional[str] = None
    transaction: str = ""
    network: str
    payer: Optional[str] = None


class SettlementResponseHeader(CamelModel):
    """Content of the X-PAYMENT-RESPONSE header."""
    success: bool
    tx_hash: Optional[str] = None
    network_id: Optional[str] = None
    chain_id: Optional[int] = None
    payer: Optional[str] = None


class X402PaymentJob(CamelModel):
    """Crypto payment job; owned and mutated only by the payment state machine."""
    job_id: str
    order_id: str
    amount_usd: float
    amount_atomic: str
    resource: str
    description: str
    status: PaymentStatus = PaymentStatus.PENDING
    payment_requirements: Optional[PaymentRequirements] = None
    payment_payload: Optional[PaymentPayload] = None
    verify_response: Optional[VerifyResponse] = None
    settle_response: Optional[SettleResponse] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    error_message: Optional[str] = None
    requires_manual_confirmation: bool = True
    manually_confirmed: bool = False
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None

    @property
    def tx_hash(self) -> Optional[str]:
        if self.settle_response and self.settle_response.transaction:
            return self.settle_response.transaction
        return None


# ------------------------------- API bodies ------------------------------- #

class CreateX402PaymentRequest(CamelModel):
    order_id: str = Field(min_length=1, description="Order ID from the business system")
    amount_usd: float = Field(gt=0, description="Amount in USD")
    description: Optional[str] = Field(None, max_length=500)
    resource: Optional[str] = None
    requires_manual_confirmation: Optional[bool] = None


class ConfirmX402PaymentRequest(CamelModel):
    confirmed_by: str = Field(min_length=1, description="Identifier of the confirming operator/agent")


class PaymentRequiredResponse(CamelModel):
    x402_version: int = Field(alias="x402Version")
    accepts: List[PaymentRequirements]
    error: Optional[str] = None
    job_id: Optional[str] = None


class PaymentOutcome(CamelModel):
    """Result of submitting or confirming a payment."""
    success: bool
    status: PaymentStatus
    tx_hash: Optional[str] = None
    block_explorer_url: Optional[str] = None
    requires_manual_confirmation: bool = False
    payer: Optional[str] = None
    error: Optional[str] = None


class X402PaymentStatusResponse(CamelModel):
    job_id: str
    order_id: str
    status: PaymentStatus
    amount_usd: float
    amount_atomic: str
    tx_hash: Optional[str] = None
    block_explorer_url: Optional[str] = None
    payer: Optional[str] = None
    requires_manual_confirmation: bool
    manually_confirmed: bool = False
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    error_message: Optional[str] = None


class SupportedKind(CamelModel):
    x402_version: int = Field(alias="x402Version")
    scheme: str
    network: str


class SupportedKindsResponse(BaseModel):
    kinds: List[SupportedKind]

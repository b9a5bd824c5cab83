"""Pure x402 ``exact`` scheme rules: amount conversion, header codecs and the
field-level checks a payment payload must pass before touching the chain.

No I/O here; the state machine and the chain adapter both build on these.
"""
from __future__ import annotations

import base64
import binascii
import json
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from app.config import X402_SETTINGS
from app.models.schemas.x402 import PaymentPayload, PaymentRequirements, SettlementResponseHeader

INVALID_PAYLOAD = "invalid_payload"


class PayloadDecodeError(ValueError):
    """The X-PAYMENT header is not base64 JSON of a payment payload."""


def _scale() -> Decimal:
    return Decimal(10) ** int(X402_SETTINGS["usdc_decimals"])


def usd_to_atomic(amount_usd: float) -> str:
    """floor(amount_usd * 10^decimals) as a decimal string.

    Goes through ``str`` so binary float noise (1.1 * 10**6 == 1100000.0000000002)
    never shifts the result: 1.0 -> "1000000", 10.5 -> "10500000", 0.0000009 -> "0".
    """
    try:
        value = Decimal(str(amount_usd))
    except InvalidOperation as e:
        raise ValueError(f"Not a number: {amount_usd!r}") from e
    if not value.is_finite():
        raise ValueError(f"Not a finite amount: {amount_usd!r}")
    return str(int((value * _scale()).to_integral_value(rounding=ROUND_FLOOR)))


def atomic_to_usd(amount_atomic: str) -> float:
    return float(Decimal(int(amount_atomic)) / _scale())


def decode_payment_header(encoded: str) -> PaymentPayload:
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PayloadDecodeError(str(e)) from e
    try:
        return PaymentPayload.model_validate(data)
    except PydanticValidationError as e:
        raise PayloadDecodeError(str(e)) from e


def encode_payment_header(payload: PaymentPayload) -> str:
    return base64.b64encode(json.dumps(payload.to_wire()).encode("utf-8")).decode("ascii")


def encode_settlement_header(header: SettlementResponseHeader) -> str:
    return base64.b64encode(json.dumps(header.to_wire()).encode("utf-8")).decode("ascii")


def parse_uint(raw: str) -> int:
    # accepts decimal or 0x-prefixed hex, as wallets emit both
    return int(raw, 0) if isinstance(raw, str) and raw.lower().startswith("0x") else int(raw)


def check_payment_against_requirements(
    payload: PaymentPayload,
    requirements: PaymentRequirements,
    now_ts: int,
) -> Optional[str]:
    """Return the first violated rule's reason code, or ``None`` if all pass.

    Order: version, scheme, network, recipient, amount, validity window.
    """
    auth = payload.payload.authorization
    if payload.x402_version != int(X402_SETTINGS["x402_version"]):
        return "invalid_version"
    if payload.scheme != X402_SETTINGS["scheme"] or requirements.scheme != X402_SETTINGS["scheme"]:
        return "unsupported_scheme"
    if payload.network != X402_SETTINGS["network"] or requirements.network != X402_SETTINGS["network"]:
        return "invalid_network"
    if auth.to.lower() != requirements.pay_to.lower():
        return "recipient_mismatch"
    try:
        value = parse_uint(auth.value)
        required = int(requirements.max_amount_required)
        valid_after = parse_uint(auth.valid_after)
        valid_before = parse_uint(auth.valid_before)
    except (TypeError, ValueError):
        return INVALID_PAYLOAD
    if value < required:
        return "insufficient_amount"
    if now_ts < valid_after:
        return "authorization_not_yet_valid"
    if now_ts >= valid_before:
        return "authorization_expired"
    return None


__all__ = [
    "INVALID_PAYLOAD",
    "PayloadDecodeError",
    "usd_to_atomic",
    "atomic_to_usd",
    "decode_payment_header",
    "encode_payment_header",
    "encode_settlement_header",
    "parse_uint",
    "check_payment_against_requirements",
]

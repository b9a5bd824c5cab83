"""Typed error taxonomy for the payment core.

Every error carries a machine-readable ``code`` and the HTTP status the API layer
answers with, so handlers catch by type instead of parsing messages.

    PaymentCoreError
    +-- ValidationError            malformed request, rejected before a job exists
    +-- ConflictError              duplicate order/memo, payload already accepted
    |   +-- InvalidStateTransition
    +-- NotFoundError              unknown job / order id
    +-- UnauthorizedError          bad or missing internal credential
    +-- ExpiredError               job outlived its payment window
    +-- VerificationFailure        authorization rejected (reason code kept)
    +-- SettlementFailure          on-chain submission failed or reverted
    +-- FacilitatorUnavailableError

The two-factor interrupt is not an error: see ``app.models.results``.
"""
from __future__ import annotations

from typing import Optional


class PaymentCoreError(Exception):
    """Base exception for all payment core errors."""

    code: str = "PAYMENT_CORE_ERROR"
    http_status: int = 500


class ValidationError(PaymentCoreError):
    code = "VALIDATION_ERROR"
    http_status = 400


class ConflictError(PaymentCoreError):
    code = "CONFLICT"
    http_status = 409


class InvalidStateTransition(ConflictError):
    """A job was asked to move to a status its current status does not allow."""

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id} cannot move from {current} to {target}")


class NotFoundError(PaymentCoreError):
    code = "NOT_FOUND"
    http_status = 404


class UnauthorizedError(PaymentCoreError):
    code = "UNAUTHORIZED"
    http_status = 401


class ExpiredError(PaymentCoreError):
    code = "PAYMENT_EXPIRED"
    http_status = 402

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Payment job {job_id} has expired")


class VerificationFailure(PaymentCoreError):
    """Authorization rejected; ``reason`` is the rail-specific reason code."""

    code = "VERIFICATION_FAILED"
    http_status = 402

    def __init__(self, job_id: str, reason: str, payer: Optional[str] = None):
        self.job_id = job_id
        self.reason = reason
        self.payer = payer
        super().__init__(reason)


class SettlementFailure(PaymentCoreError):
    code = "SETTLEMENT_FAILED"
    http_status = 402

    def __init__(self, job_id: str, reason: str, transaction: Optional[str] = None):
        self.job_id = job_id
        self.reason = reason
        self.transaction = transaction
        super().__init__(reason)


class FacilitatorUnavailableError(PaymentCoreError):
    code = "FACILITATOR_UNAVAILABLE"
    http_status = 503


__all__ = [
    "PaymentCoreError",
    "ValidationError",
    "ConflictError",
    "InvalidStateTransition",
    "NotFoundError",
    "UnauthorizedError",
    "ExpiredError",
    "VerificationFailure",
    "SettlementFailure",
    "FacilitatorUnavailableError",
]

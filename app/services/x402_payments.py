"""Crypto payment state machine for x402 ``exact`` payments.

Lifecycle (auto settlement):
    pending -> payment_required -> payment_received -> verifying -> verified
            -> settling -> settled -> completed
Manual confirmation parks the job between ``verified`` and ``settling``:
    verified -> awaiting_confirmation -> settling
``failed`` and ``expired`` are reachable from any non-terminal state;
``completed``, ``failed`` and ``expired`` are terminal. Every status change goes
through ``_transition`` which enforces the table below.

Rules:
1. Expiry is lazy: a payload arriving at or after ``expires_at`` moves the job to
   ``expired`` before the payload is even decoded. Once a payload is accepted the
   authorization's own validity window governs instead.
2. At most one payload is accepted per job. The status check and the move to
   ``payment_received`` happen without yielding to the event loop, so two
   concurrent submissions cannot both pass.
3. Settlement (re-verify, submit, wait for inclusion) always runs on the
   facilitator-wallet queue, one transaction at a time.
4. Money is compared in atomic integer units only.
5. A queued settlement outlives its caller: cancelling the awaiting request
   does not cancel it, so the job still ends ``completed`` or ``failed``.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from collections import defaultdict
from typing import Any, Dict, List, Optional

from app.config import DEFAULT_REQUIRES_MANUAL_CONFIRMATION, X402_PAY_TO_ADDRESS, X402_SETTINGS
from app.exceptions import (
    ConflictError,
    ExpiredError,
    FacilitatorUnavailableError,
    InvalidStateTransition,
    NotFoundError,
    SettlementFailure,
    ValidationError,
    VerificationFailure,
)
from app.integrations.base import BlockchainClient
from app.jobs.queue import SequentialJobQueue
from app.models.enums import PaymentStatus, X402WebhookEventType
from app.models.schemas.x402 import (
    PaymentOutcome,
    PaymentPayload,
    PaymentRequirements,
    SupportedKind,
    SupportedKindsResponse,
    X402PaymentJob,
)
from app.services import x402_protocol
from app.services.webhooks import WebhookDispatcher, x402_event
from app.utils import get_logger, log_business_event
from app.utils.time import Clock, epoch_seconds, utc_now

logger = get_logger(__name__)

S = PaymentStatus

_TRANSITIONS: Dict[PaymentStatus, frozenset] = {
    S.PENDING: frozenset({S.PAYMENT_REQUIRED}),
    S.PAYMENT_REQUIRED: frozenset({S.PAYMENT_RECEIVED}),
    S.PAYMENT_RECEIVED: frozenset({S.VERIFYING}),
    S.VERIFYING: frozenset({S.VERIFIED}),
    S.VERIFIED: frozenset({S.SETTLING, S.AWAITING_CONFIRMATION}),
    S.AWAITING_CONFIRMATION: frozenset({S.SETTLING}),
    S.SETTLING: frozenset({S.SETTLED}),
    S.SETTLED: frozenset({S.COMPLETED}),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    if current.is_terminal:
        return False
    if target in (S.FAILED, S.EXPIRED):
        return True
    return target in _TRANSITIONS.get(current, frozenset())


class X402PaymentService:
    def __init__(
        self,
        chain: BlockchainClient,
        webhooks: WebhookDispatcher,
        wallet_queue: SequentialJobQueue,
        pay_to: Optional[str] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._chain = chain
        self._webhooks = webhooks
        self._wallet_queue = wallet_queue
        self._pay_to = pay_to
        self._clock = clock
        self._jobs: Dict[str, X402PaymentJob] = {}
        self._jobs_by_order: Dict[str, List[str]] = defaultdict(list)

    # ----------------------------- internal helpers ----------------------------- #
    def _require(self, job_id: str) -> X402PaymentJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Payment job {job_id} not found")
        return job

    def _recipient(self) -> Optional[str]:
        return self._pay_to or X402_PAY_TO_ADDRESS or self._chain.address

    def _transition(self, job: X402PaymentJob, target: PaymentStatus, **changes: Any) -> None:
        if not can_transition(job.status, target):
            raise InvalidStateTransition(job.job_id, job.status.value, target.value)
        previous = job.status
        for field, value in changes.items():
            setattr(job, field, value)
        job.status = target
        job.updated_at = self._clock()
        log_business_event(
            "x402_status_changed",
            {"from_status": previous.value, "to_status": target.value},
            order_id=job.order_id,
            job_id=job.job_id,
        )

    async def _emit(self, event_type: X402WebhookEventType, job: X402PaymentJob, **data: Any) -> None:
        await self._webhooks.dispatch(x402_event(event_type, job, **data))

    async def _fail(self, job: X402PaymentJob, reason: str, payer: Optional[str] = None) -> None:
        self._transition(job, S.FAILED, error_message=reason)
        logger.warning("Payment job failed", job_id=job.job_id, order_id=job.order_id, reason=reason, payer=payer)
        await self._emit(X402WebhookEventType.PAYMENT_FAILED, job, error=reason, payer=payer)

    async def _expire(self, job: X402PaymentJob) -> None:
        self._transition(job, S.EXPIRED, error_message="Payment window expired")
        logger.info("Payment job expired", job_id=job.job_id, order_id=job.order_id, expires_at=job.expires_at.isoformat())
        await self._emit(X402WebhookEventType.PAYMENT_EXPIRED, job)

    def _outcome(self, job: X402PaymentJob, success: bool, error: Optional[str] = None) -> PaymentOutcome:
        tx_hash = job.tx_hash
        payer = None
        if job.settle_response and job.settle_response.payer:
            payer = job.settle_response.payer
        elif job.verify_response:
            payer = job.verify_response.payer
        return PaymentOutcome(
            success=success,
            status=job.status,
            tx_hash=tx_hash,
            block_explorer_url=self._chain.explorer_url(tx_hash) if tx_hash else None,
            requires_manual_confirmation=job.requires_manual_confirmation,
            payer=payer,
            error=error,
        )

    async def _verify(self, job: X402PaymentJob, payload: PaymentPayload) -> Optional[str]:
        """Protocol rules then chain checks; returns the failure reason or ``None``."""
        reason = x402_protocol.check_payment_against_requirements(
            payload, job.payment_requirements, epoch_seconds(self._clock())
        )
        if reason:
            return reason
        try:
            verdict = await self._chain.verify_authorization(payload, job.payment_requirements)
        except Exception as e:
            logger.error("Chain verification raised", job_id=job.job_id, error=str(e), exc_info=True)
            return f"verification_error: {e}"
        job.verify_response = verdict
        if not verdict.is_valid:
            return verdict.invalid_reason or "verification_failed"
        return None

    # ----------------------------- public API ----------------------------- #
    async def create_payment_job(
        self,
        order_id: str,
        amount_usd: float,
        description: Optional[str] = None,
        resource: Optional[str] = None,
        requires_manual_confirmation: Optional[bool] = None,
    ) -> X402PaymentJob:
        """Open a job in ``payment_required`` and announce its requirements."""
        if not order_id:
            raise ValidationError("order_id is required")
        try:
            amount_atomic = x402_protocol.usd_to_atomic(amount_usd)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if amount_usd <= 0 or int(amount_atomic) <= 0:
            raise ValidationError(f"Amount must be positive and at least one atomic unit, got {amount_usd}")
        pay_to = self._recipient()
        if not pay_to:
            raise FacilitatorUnavailableError("No payment recipient configured")
        if requires_manual_confirmation is None:
            requires_manual_confirmation = DEFAULT_REQUIRES_MANUAL_CONFIRMATION

        now = self._clock()
        timeout_seconds = int(X402_SETTINGS["max_timeout_seconds"])
        description = description or f"Payment for order {order_id}"
        requirements = PaymentRequirements(
            scheme=str(X402_SETTINGS["scheme"]),
            network=str(X402_SETTINGS["network"]),
            max_amount_required=amount_atomic,
            resource=resource or str(X402_SETTINGS["default_resource"]),
            description=description,
            mime_type=str(X402_SETTINGS["mime_type"]),
            pay_to=pay_to,
            max_timeout_seconds=timeout_seconds,
            asset=str(X402_SETTINGS["usdc_address"]),
            extra={"name": str(X402_SETTINGS["usdc_name"]), "version": str(X402_SETTINGS["usdc_version"])},
        )
        job = X402PaymentJob(
            job_id=f"x402_{uuid.uuid4().hex}",
            order_id=order_id,
            amount_usd=amount_usd,
            amount_atomic=amount_atomic,
            resource=requirements.resource,
            description=description,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=timeout_seconds),
            requires_manual_confirmation=requires_manual_confirmation,
        )
        self._jobs[job.job_id] = job
        self._jobs_by_order[order_id].append(job.job_id)
        self._transition(job, S.PAYMENT_REQUIRED, payment_requirements=requirements)
        logger.info(
            "Payment job created",
            job_id=job.job_id,
            order_id=order_id,
            amount_usd=amount_usd,
            amount_atomic=amount_atomic,
            requires_manual_confirmation=requires_manual_confirmation,
        )
        await self._emit(
            X402WebhookEventType.PAYMENT_REQUIRED,
            job,
            paymentRequirements=requirements.to_wire(),
        )
        return job.model_copy(deep=True)

    async def process_payment(self, job_id: str, encoded_payload: str) -> PaymentOutcome:
        """Accept, verify and (auto mode) settle a payment for ``job_id``.

        Raises ``NotFoundError``, ``ConflictError``, ``ExpiredError``,
        ``VerificationFailure``, ``SettlementFailure`` or
        ``FacilitatorUnavailableError``.
        """
        job = self._require(job_id)
        if job.status == S.EXPIRED:
            raise ExpiredError(job_id)
        if job.status != S.PAYMENT_REQUIRED:
            raise ConflictError(f"Payment job {job_id} already received a payment (status {job.status.value})")
        if self._clock() >= job.expires_at:
            await self._expire(job)
            raise ExpiredError(job_id)
        if not self._chain.is_ready():
            raise FacilitatorUnavailableError("Facilitator is not configured")

        try:
            payload = x402_protocol.decode_payment_header(encoded_payload)
        except x402_protocol.PayloadDecodeError as e:
            logger.warning("Undecodable payment payload", job_id=job_id, error=str(e))
            await self._fail(job, x402_protocol.INVALID_PAYLOAD)
            raise VerificationFailure(job_id, x402_protocol.INVALID_PAYLOAD) from e

        payer = payload.payload.authorization.from_address
        self._transition(job, S.PAYMENT_RECEIVED, payment_payload=payload)
        self._transition(job, S.VERIFYING)
        reason = await self._verify(job, payload)
        if reason:
            await self._fail(job, reason, payer=payer)
            raise VerificationFailure(job_id, reason, payer=payer)

        self._transition(job, S.VERIFIED)
        await self._emit(X402WebhookEventType.PAYMENT_VERIFIED, job, payer=payer)

        if job.requires_manual_confirmation:
            self._transition(job, S.AWAITING_CONFIRMATION)
            logger.info("Payment verified; awaiting manual confirmation", job_id=job_id, order_id=job.order_id)
            return self._outcome(job, success=True)
        return await asyncio.shield(self._wallet_queue.enqueue(lambda: self._settle(job_id)))

    async def confirm_payment(self, job_id: str, confirmed_by: str) -> PaymentOutcome:
        """Release a verified job parked in ``awaiting_confirmation`` for settlement."""
        job = self._require(job_id)
        if job.status != S.AWAITING_CONFIRMATION or job.manually_confirmed:
            raise ConflictError(f"Payment job {job_id} is not awaiting confirmation (status {job.status.value})")
        job.manually_confirmed = True
        job.confirmed_at = self._clock()
        job.confirmed_by = confirmed_by
        log_business_event(
            "x402_payment_confirmed_by_operator",
            {"confirmed_by": confirmed_by},
            order_id=job.order_id,
            job_id=job_id,
        )
        return await asyncio.shield(self._wallet_queue.enqueue(lambda: self._settle(job_id)))

    async def _settle(self, job_id: str) -> PaymentOutcome:
        job = self._require(job_id)
        self._transition(job, S.SETTLING)
        payload = job.payment_payload
        payer = payload.payload.authorization.from_address

        reason = await self._verify(job, payload)
        if reason:
            await self._fail(job, reason, payer=payer)
            raise SettlementFailure(job_id, reason)

        try:
            settlement = await self._chain.settle_authorization(payload, job.payment_requirements)
        except Exception as e:
            logger.error("Chain settlement raised", job_id=job_id, error=str(e), exc_info=True)
            reason = f"settlement_error: {e}"
            await self._fail(job, reason, payer=payer)
            raise SettlementFailure(job_id, reason) from e
        job.settle_response = settlement
        if not settlement.success:
            reason = settlement.error_reason or "settlement_failed"
            await self._fail(job, reason, payer=payer)
            raise SettlementFailure(job_id, reason, transaction=settlement.transaction or None)

        self._transition(job, S.SETTLED)
        explorer = self._chain.explorer_url(settlement.transaction)
        logger.info("Payment settled", job_id=job_id, order_id=job.order_id, tx_hash=settlement.transaction)
        await self._emit(
            X402WebhookEventType.PAYMENT_SETTLED,
            job,
            blockExplorerUrl=explorer,
            payer=settlement.payer or payer,
        )
        self._transition(job, S.COMPLETED)
        if job.manually_confirmed:
            await self._emit(
                X402WebhookEventType.PAYMENT_CONFIRMED,
                job,
                confirmedBy=job.confirmed_by,
                confirmedAt=job.confirmed_at.isoformat() if job.confirmed_at else None,
            )
        return self._outcome(job, success=True)

    # ----------------------------- inspection ----------------------------- #
    def get_job_status(self, job_id: str) -> Optional[X402PaymentJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    def get_job_by_order_id(self, order_id: str) -> Optional[X402PaymentJob]:
        job_ids = self._jobs_by_order.get(order_id)
        if not job_ids:
            return None
        return self.get_job_status(job_ids[-1])

    def block_explorer_url(self, tx_hash: str) -> str:
        return self._chain.explorer_url(tx_hash)

    def supported_kinds(self) -> SupportedKindsResponse:
        return SupportedKindsResponse(
            kinds=[
                SupportedKind(
                    x402_version=int(X402_SETTINGS["x402_version"]),
                    scheme=str(X402_SETTINGS["scheme"]),
                    network=str(X402_SETTINGS["network"]),
                )
            ]
        )

    def health(self) -> Dict[str, Any]:
        ready = self._chain.is_ready()
        return {
            "status": "ok" if ready else "degraded",
            "facilitatorReady": ready,
            "network": X402_SETTINGS["network"],
            "chainId": X402_SETTINGS["chain_id"],
            "facilitatorAddress": self._chain.address,
        }

    def snapshot(self) -> Dict[str, Any]:
        by_status: Dict[str, int] = defaultdict(int)
        for job in self._jobs.values():
            by_status[job.status.value] += 1
        return {"jobs": len(self._jobs), "by_status": dict(by_status)}


__all__ = ["X402PaymentService", "can_transition"]

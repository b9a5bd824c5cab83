"""Bank QR rail orchestration.

Each request is validated and reserved synchronously (so callers get 400/409
immediately), then the portal work is queued on the browser-session queue. The
queued task never raises for automation problems; it resolves to one of:

* ``Ok(value)``          work done, webhook emitted
* ``TwoFactorRequired``  portal asked for a code; ``LOGIN_2FA_REQUIRED`` emitted
* ``Err(error)``         unexpected failure, logged as "Fiat automation failed"

Interrupted and failed QR jobs release their duplicate-guard reservation so the
same order can be queued again once the cause is fixed.
"""
from __future__ import annotations

import math
from typing import Any, Dict, Optional

from app.config import FIAT_SETTINGS
from app.exceptions import ValidationError
from app.integrations.base import BrowserAutomation
from app.jobs.fiat_jobs import FiatJobTicket, FiatQrJob, FiatVerificationJob
from app.jobs.queue import SequentialJobQueue
from app.models.enums import FiatJobOutcome
from app.models.results import AutomationResult, Err, Ok, TwoFactorRequired
from app.services import webhooks as events
from app.services.duplicate_guard import DuplicateGuard, normalize_memo
from app.services.two_factor import TwoFactorStore
from app.services.webhooks import WebhookDispatcher
from app.utils import get_logger, log_business_event, log_performance
from app.utils.time import utc_now

logger = get_logger(__name__)


class FiatOrchestrator:
    def __init__(
        self,
        browser: BrowserAutomation,
        webhooks: WebhookDispatcher,
        two_factor: TwoFactorStore,
        browser_queue: SequentialJobQueue,
        guard: DuplicateGuard,
    ) -> None:
        self._browser = browser
        self._webhooks = webhooks
        self._two_factor = two_factor
        self._queue = browser_queue
        self._guard = guard

    # ----------------------------- queueing ----------------------------- #
    def queue_generate_qr(
        self,
        order_id: str,
        amount: float,
        details: str,
        correlation_id: Optional[str] = None,
    ) -> FiatJobTicket:
        """Reserve and queue a QR generation. Raises ``ValidationError`` / ``ConflictError``."""
        if not order_id:
            raise ValidationError("order_id is required")
        if not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount <= 0:
            raise ValidationError(f"Amount must be a positive number, got {amount!r}")
        job = self._guard.reserve(order_id, amount, details)
        job.correlation_id = correlation_id
        try:
            handle = self._queue.enqueue(lambda: self._run_generate_qr(job))
        except RuntimeError:
            self._guard.mark_outcome(order_id, FiatJobOutcome.FAILED)
            raise
        logger.info("QR generation queued", order_id=order_id, memo=job.memo, queue_depth=self._queue.depth(), request_id=correlation_id)
        return FiatJobTicket(job=job, handle=handle)

    def queue_verify_payment(
        self,
        order_id: str,
        details: str,
        correlation_id: Optional[str] = None,
    ) -> FiatJobTicket:
        if not order_id:
            raise ValidationError("order_id is required")
        job = FiatVerificationJob(order_id=order_id, memo=normalize_memo(details), correlation_id=correlation_id)
        handle = self._queue.enqueue(lambda: self._run_verify_payment(job))
        logger.info("Payment verification queued", order_id=order_id, memo=job.memo, queue_depth=self._queue.depth(), request_id=correlation_id)
        return FiatJobTicket(job=job, handle=handle)

    def submit_two_factor_code(self, code: str) -> Dict[str, str]:
        try:
            self._two_factor.set_code(code)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        log_business_event("fiat_2fa_code_submitted", {})
        return {"status": "updated", "message": "Retry the job now"}

    # ----------------------------- queued work ----------------------------- #
    async def _interrupted(self, order_id: str, result: TwoFactorRequired) -> TwoFactorRequired:
        logger.info("Portal login needs a 2FA code; job stopped", order_id=order_id)
        await self._webhooks.dispatch(events.two_factor_required(order_id, result.message))
        return result

    def _failed(self, order_id: str, error: Exception, operation: str) -> Err:
        logger.error(
            "Fiat automation failed",
            order_id=order_id,
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
            exc_info=True,
        )
        return Err(error)

    async def _run_generate_qr(self, job: FiatQrJob) -> AutomationResult:
        started = utc_now()
        try:
            session = await self._browser.ensure_session()
            if isinstance(session, TwoFactorRequired):
                self._guard.mark_outcome(job.order_id, FiatJobOutcome.FAILED)
                return await self._interrupted(job.order_id, session)
            image = await self._browser.generate_receipt(job.amount, job.memo)
        except Exception as e:
            self._guard.mark_outcome(job.order_id, FiatJobOutcome.FAILED)
            return self._failed(job.order_id, e, "generate_qr")

        self._guard.mark_outcome(job.order_id, FiatJobOutcome.SUCCEEDED)
        log_performance(
            "fiat_generate_qr",
            (utc_now() - started).total_seconds() * 1000,
            {"order_id": job.order_id},
        )
        log_business_event("fiat_qr_generated", {"memo": job.memo, "amount": job.amount}, order_id=job.order_id, request_id=job.correlation_id)
        await self._webhooks.dispatch(events.qr_generated(job.order_id, image))
        return Ok(image)

    async def _run_verify_payment(self, job: FiatVerificationJob) -> AutomationResult:
        started = utc_now()
        try:
            session = await self._browser.ensure_session()
            if isinstance(session, TwoFactorRequired):
                return await self._interrupted(job.order_id, session)
            latest_memo = await self._browser.read_latest_transaction_memo()
        except Exception as e:
            return self._failed(job.order_id, e, "verify_payment")

        marker = str(FIAT_SETTINGS["verification_marker"])
        success = marker in latest_memo and job.memo in latest_memo
        log_performance(
            "fiat_verify_payment",
            (utc_now() - started).total_seconds() * 1000,
            {"order_id": job.order_id, "success": success},
        )
        log_business_event("fiat_payment_verified", {"success": success, "memo": job.memo}, order_id=job.order_id, request_id=job.correlation_id)
        await self._webhooks.dispatch(events.verification_result(job.order_id, success))
        return Ok(success)

    # ----------------------------- inspection ----------------------------- #
    def snapshot(self) -> Dict[str, Any]:
        return {
            "reserved_orders": len(self._guard),
            "two_factor_code_pending": self._two_factor.has_code(),
            "queue": self._queue.snapshot(),
        }


__all__ = ["FiatOrchestrator"]

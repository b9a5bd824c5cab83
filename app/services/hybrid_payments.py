"""Hybrid payment offers: one order, bank QR and/or x402 crypto.

A rail failure aborts the request only when that rail was the only one asked for
(or when every requested rail failed). Otherwise the failure is reported in the
response next to the rail that did work:

    FIAT_QR      fiat errors raise
    X402_CRYPTO  crypto errors raise
    HYBRID       fiat errors -> fiatQrStatus="rejected" + fiatQrError
                 crypto errors -> x402Error
"""
from __future__ import annotations

from typing import Optional

from app.exceptions import PaymentCoreError
from app.models.enums import PaymentMethod
from app.models.schemas.fiat import HybridPaymentResponse
from app.services.fiat_automation import FiatOrchestrator
from app.services.x402_payments import X402PaymentService
from app.utils import get_logger

logger = get_logger(__name__)


class HybridPaymentCoordinator:
    def __init__(self, fiat: FiatOrchestrator, x402: X402PaymentService) -> None:
        self._fiat = fiat
        self._x402 = x402

    async def create(
        self,
        order_id: str,
        amount: float,
        details: str,
        payment_method: PaymentMethod = PaymentMethod.HYBRID,
        requires_manual_confirmation: Optional[bool] = None,
        correlation_id: Optional[str] = None,
    ) -> HybridPaymentResponse:
        response = HybridPaymentResponse(order_id=order_id)
        first_error: Optional[PaymentCoreError] = None

        if payment_method in (PaymentMethod.FIAT_QR, PaymentMethod.HYBRID):
            try:
                self._fiat.queue_generate_qr(order_id, amount, details, correlation_id=correlation_id)
            except PaymentCoreError as e:
                if payment_method == PaymentMethod.FIAT_QR:
                    raise
                logger.warning("Fiat QR rejected for hybrid payment", order_id=order_id, error=str(e), code=e.code)
                response.fiat_qr_status = "rejected"
                response.fiat_qr_error = str(e)
                first_error = e
            else:
                response.fiat_qr_status = "queued"
                response.available_methods.append("fiat_qr")
                logger.info("Fiat QR queued for hybrid payment", order_id=order_id)

        if payment_method in (PaymentMethod.X402_CRYPTO, PaymentMethod.HYBRID):
            try:
                job = await self._x402.create_payment_job(
                    order_id,
                    amount,
                    description=details,
                    requires_manual_confirmation=requires_manual_confirmation,
                )
            except PaymentCoreError as e:
                if payment_method == PaymentMethod.X402_CRYPTO:
                    raise
                logger.error("Failed to create x402 payment for hybrid payment", order_id=order_id, error=str(e), code=e.code)
                response.x402_error = str(e)
                first_error = first_error or e
            else:
                requirements = job.payment_requirements
                response.x402_job_id = job.job_id
                response.x402_payment_requirements = {
                    "scheme": requirements.scheme,
                    "network": requirements.network,
                    "maxAmountRequired": requirements.max_amount_required,
                    "payTo": requirements.pay_to,
                    "asset": requirements.asset,
                }
                response.available_methods.append("x402_crypto")
                logger.info("x402 payment job created for hybrid payment", order_id=order_id, job_id=job.job_id)

        if not response.available_methods and first_error is not None:
            raise first_error
        return response


__all__ = ["HybridPaymentCoordinator"]

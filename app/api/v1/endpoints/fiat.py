"""
Bank QR rail endpoints.

Work happens in the background on the browser-session queue; these endpoints
only validate, reserve and enqueue, answering 202. Results arrive by webhook.
"""
from fastapi import APIRouter, Depends, Request, status

from app.api.deps import get_fiat_orchestrator, get_hybrid_coordinator, get_request_id, require_internal_api_key
from app.models.schemas.fiat import (
    GenerateQrRequest,
    HybridPaymentRequest,
    SetTwoFactorRequest,
    VerifyPaymentRequest,
)
from app.services.fiat_automation import FiatOrchestrator
from app.services.hybrid_payments import HybridPaymentCoordinator
from app.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/generate-qr",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a job that generates a QR image in the bank portal",
)
async def generate_qr(
    payload: GenerateQrRequest,
    request: Request,
    fiat: FiatOrchestrator = Depends(get_fiat_orchestrator),
):
    """Reserve the order/glosa pair and queue QR generation.

    400 when the glosa normalizes to an invalid value, 409 when an active QR
    already exists for the order or glosa.
    """
    ticket = fiat.queue_generate_qr(
        payload.order_id,
        payload.amount,
        payload.details,
        correlation_id=get_request_id(request),
    )
    return {"status": "accepted", "orderId": ticket.job.order_id, "details": ticket.job.memo}


@router.post(
    "/verify-payment",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a job that verifies the latest payment using its glosa",
)
async def verify_payment(
    payload: VerifyPaymentRequest,
    request: Request,
    fiat: FiatOrchestrator = Depends(get_fiat_orchestrator),
):
    ticket = fiat.queue_verify_payment(payload.order_id, payload.details, correlation_id=get_request_id(request))
    return {"status": "accepted", "orderId": ticket.job.order_id}


@router.post(
    "/set-2fa",
    summary="Provide the current 2FA code to unblock portal logins",
    dependencies=[Depends(require_internal_api_key)],
)
async def set_two_factor(
    payload: SetTwoFactorRequest,
    request: Request,
    fiat: FiatOrchestrator = Depends(get_fiat_orchestrator),
):
    logger.info("2FA code submitted", request_id=get_request_id(request))
    return fiat.submit_two_factor_code(payload.code)


@router.post(
    "/generate-hybrid-payment",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate hybrid payment options (bank QR + x402 crypto)",
)
async def generate_hybrid_payment(
    payload: HybridPaymentRequest,
    request: Request,
    hybrid: HybridPaymentCoordinator = Depends(get_hybrid_coordinator),
):
    """QR image arrives via webhook; the crypto leg is paid via ``/x402/payment/{job_id}/pay``."""
    response = await hybrid.create(
        payload.order_id,
        payload.amount,
        payload.details,
        payment_method=payload.payment_method,
        requires_manual_confirmation=payload.requires_manual_confirmation,
        correlation_id=get_request_id(request),
    )
    return response.to_wire()

"""
x402 (HTTP 402 Payment Required) endpoints.

Flow:
  POST /payment               create job -> 402 with payment requirements
  POST /payment/{id}/pay      submit signed authorization in X-PAYMENT
  POST /payment/{id}/confirm  operator releases a verified payment for settlement
  GET  /payment/{id}/status   job snapshot
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse

from app.api.deps import get_request_id, get_x402_service, require_internal_api_key
from app.config import X402_SETTINGS
from app.exceptions import ExpiredError, NotFoundError, SettlementFailure, VerificationFailure
from app.models.schemas.x402 import (
    ConfirmX402PaymentRequest,
    CreateX402PaymentRequest,
    PaymentOutcome,
    PaymentRequiredResponse,
    SettlementResponseHeader,
    SupportedKindsResponse,
    X402PaymentJob,
    X402PaymentStatusResponse,
)
from app.services.x402_payments import X402PaymentService
from app.services.x402_protocol import encode_settlement_header
from app.utils import get_logger

router = APIRouter()
logger = get_logger(__name__)

PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


def _payment_required(job: Optional[X402PaymentJob], error: Optional[str] = None, job_id: Optional[str] = None) -> JSONResponse:
    body = PaymentRequiredResponse(
        x402_version=int(X402_SETTINGS["x402_version"]),
        accepts=[job.payment_requirements] if job is not None and job.payment_requirements else [],
        error=error,
        job_id=job_id,
    )
    return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=body.to_wire())


def _status_response(job: X402PaymentJob, service: X402PaymentService) -> X402PaymentStatusResponse:
    tx_hash = job.tx_hash
    return X402PaymentStatusResponse(
        job_id=job.job_id,
        order_id=job.order_id,
        status=job.status,
        amount_usd=job.amount_usd,
        amount_atomic=job.amount_atomic,
        tx_hash=tx_hash,
        block_explorer_url=service.block_explorer_url(tx_hash) if tx_hash else None,
        payer=job.settle_response.payer if job.settle_response else None,
        requires_manual_confirmation=job.requires_manual_confirmation,
        manually_confirmed=job.manually_confirmed,
        confirmed_at=job.confirmed_at,
        confirmed_by=job.confirmed_by,
        created_at=job.created_at,
        updated_at=job.updated_at,
        expires_at=job.expires_at,
        error_message=job.error_message,
    )


@router.post(
    "/payment",
    status_code=status.HTTP_402_PAYMENT_REQUIRED,
    summary="Create x402 payment request",
)
async def create_payment(
    payload: CreateX402PaymentRequest,
    request: Request,
    service: X402PaymentService = Depends(get_x402_service),
) -> JSONResponse:
    """Create a payment job and answer 402 with its requirements.

    The client signs the authorization and submits it via ``/payment/{job_id}/pay``.
    """
    job = await service.create_payment_job(
        payload.order_id,
        payload.amount_usd,
        description=payload.description,
        resource=payload.resource,
        requires_manual_confirmation=payload.requires_manual_confirmation,
    )
    logger.info("x402 payment requested", job_id=job.job_id, order_id=job.order_id, request_id=get_request_id(request))
    return _payment_required(job, job_id=job.job_id)


@router.post("/payment/{job_id}/pay", summary="Submit x402 payment")
async def submit_payment(
    job_id: str,
    request: Request,
    x_payment: Optional[str] = Header(None, alias=PAYMENT_HEADER),
    service: X402PaymentService = Depends(get_x402_service),
) -> JSONResponse:
    request_id = get_request_id(request)
    if not x_payment:
        job = service.get_job_status(job_id)
        if job is None:
            raise NotFoundError(f"Payment job {job_id} not found")
        return _payment_required(job, error=f"{PAYMENT_HEADER} header is required")

    try:
        outcome: PaymentOutcome = await service.process_payment(job_id, x_payment)
    except (VerificationFailure, SettlementFailure) as e:
        logger.warning("x402 payment rejected", job_id=job_id, reason=e.reason, request_id=request_id)
        return _payment_required(service.get_job_status(job_id), error=e.reason)
    except ExpiredError as e:
        logger.info("x402 payment arrived after expiry", job_id=job_id, request_id=request_id)
        return _payment_required(service.get_job_status(job_id), error=str(e))

    response = JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "success": outcome.success,
            "status": outcome.status.value,
            "txHash": outcome.tx_hash,
            "blockExplorerUrl": outcome.block_explorer_url,
            "requiresManualConfirmation": outcome.requires_manual_confirmation,
        },
    )
    if outcome.tx_hash:
        response.headers[PAYMENT_RESPONSE_HEADER] = encode_settlement_header(
            SettlementResponseHeader(
                success=True,
                tx_hash=outcome.tx_hash,
                network_id=str(X402_SETTINGS["network"]),
                chain_id=int(X402_SETTINGS["chain_id"]),
                payer=outcome.payer,
            )
        )
    return response


@router.post(
    "/payment/{job_id}/confirm",
    summary="Manually confirm x402 payment",
    dependencies=[Depends(require_internal_api_key)],
)
async def confirm_payment(
    job_id: str,
    payload: ConfirmX402PaymentRequest,
    request: Request,
    service: X402PaymentService = Depends(get_x402_service),
):
    logger.info("Manual confirmation requested", job_id=job_id, confirmed_by=payload.confirmed_by, request_id=get_request_id(request))
    outcome = await service.confirm_payment(job_id, payload.confirmed_by)
    return outcome.to_wire()


@router.get("/payment/{job_id}/status", summary="Get x402 payment status")
async def get_payment_status(
    job_id: str,
    service: X402PaymentService = Depends(get_x402_service),
):
    job = service.get_job_status(job_id)
    if job is None:
        raise NotFoundError("Payment job not found")
    return _status_response(job, service).to_wire()


@router.get("/order/{order_id}/status", summary="Get x402 payment status by order ID")
async def get_payment_by_order(
    order_id: str,
    service: X402PaymentService = Depends(get_x402_service),
):
    job = service.get_job_by_order_id(order_id)
    if job is None:
        raise NotFoundError("Payment not found for order")
    return _status_response(job, service).to_wire()


@router.get("/supported", response_model=SupportedKindsResponse, response_model_by_alias=True, summary="Supported payment kinds")
async def get_supported(service: X402PaymentService = Depends(get_x402_service)) -> SupportedKindsResponse:
    return service.supported_kinds()


@router.get("/health", summary="Facilitator health")
async def get_health(service: X402PaymentService = Depends(get_x402_service)):
    return service.health()

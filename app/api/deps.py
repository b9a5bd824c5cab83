"""
Dependencies for the payment runtime services and internal-caller authentication.
"""
import hmac
from typing import Optional

from fastapi import Depends, Header, Request

from app.exceptions import FacilitatorUnavailableError, UnauthorizedError
from app.runtime import PaymentRuntime
from app.services.fiat_automation import FiatOrchestrator
from app.services.hybrid_payments import HybridPaymentCoordinator
from app.services.x402_payments import X402PaymentService
from app.utils import get_logger

logger = get_logger(__name__)


def get_runtime(request: Request) -> PaymentRuntime:
    """Runtime created by the application lifespan."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise FacilitatorUnavailableError("Payment runtime not initialized")
    return runtime


def get_x402_service(runtime: PaymentRuntime = Depends(get_runtime)) -> X402PaymentService:
    return runtime.x402


def get_fiat_orchestrator(runtime: PaymentRuntime = Depends(get_runtime)) -> FiatOrchestrator:
    return runtime.fiat


def get_hybrid_coordinator(runtime: PaymentRuntime = Depends(get_runtime)) -> HybridPaymentCoordinator:
    return runtime.hybrid


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID", "unknown")


def require_internal_api_key(
    request: Request,
    x_internal_api_key: Optional[str] = Header(None, alias="X-Internal-API-Key"),
) -> None:
    """Guard for privileged operations (2FA submission, manual confirmation).

    Rejects every call when ``INTERNAL_API_KEY`` is not configured.
    """
    from app.config import INTERNAL_API_KEY

    if not INTERNAL_API_KEY:
        logger.error("INTERNAL_API_KEY not configured; privileged call rejected", path=request.url.path)
        raise UnauthorizedError("Internal API key not configured")
    if not x_internal_api_key or not hmac.compare_digest(
        x_internal_api_key.encode("utf-8"), INTERNAL_API_KEY.encode("utf-8")
    ):
        logger.warning("Invalid internal API key", path=request.url.path, request_id=get_request_id(request))
        raise UnauthorizedError("Invalid internal API key")

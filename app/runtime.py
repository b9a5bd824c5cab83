"""Process-wide wiring of the payment core.

``PaymentRuntime`` owns every stateful object: the two queues, the 2FA store,
the duplicate guard, the collaborators and the services built on them. It is
constructed once inside the FastAPI lifespan and torn down there:

    start():  collaborators acquire their resources (chain connection; the
              browser launches lazily on first job)
    close():  queues stop accepting work, queued work drains, the browser and
              chain connections are released
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.config import WEBHOOK_SETTINGS, WEBHOOK_URL
from app.integrations.base import BlockchainClient, BrowserAutomation
from app.jobs.queue import SequentialJobQueue
from app.services.duplicate_guard import DuplicateGuard
from app.services.fiat_automation import FiatOrchestrator
from app.services.hybrid_payments import HybridPaymentCoordinator
from app.services.two_factor import TwoFactorStore
from app.services.webhooks import WebhookDispatcher
from app.services.x402_payments import X402PaymentService
from app.utils import get_logger
from app.utils.time import Clock, utc_now

logger = get_logger(__name__)

BROWSER_QUEUE = "browser-session"
WALLET_QUEUE = "facilitator-wallet"


@dataclass
class PaymentRuntime:
    browser: BrowserAutomation
    chain: BlockchainClient
    webhooks: WebhookDispatcher
    two_factor: TwoFactorStore
    guard: DuplicateGuard
    browser_queue: SequentialJobQueue
    wallet_queue: SequentialJobQueue
    fiat: FiatOrchestrator
    x402: X402PaymentService
    hybrid: HybridPaymentCoordinator

    async def start(self) -> None:
        await self.browser.start()
        await self.chain.start()
        logger.info("Payment runtime started", facilitator_ready=self.chain.is_ready())

    async def close(self) -> None:
        for queue in (self.browser_queue, self.wallet_queue):
            queue.shutdown()
        for queue in (self.browser_queue, self.wallet_queue):
            await queue.drain()
        try:
            await self.browser.close()
        finally:
            await self.chain.close()
        logger.info("Payment runtime closed")

    def snapshot(self) -> Dict[str, Any]:
        return {
            "queues": {
                BROWSER_QUEUE: self.browser_queue.snapshot(),
                WALLET_QUEUE: self.wallet_queue.snapshot(),
            },
            "fiat": {
                "reserved_orders": len(self.guard),
                "two_factor_code_pending": self.two_factor.has_code(),
            },
            "x402": self.x402.snapshot(),
            "facilitator_ready": self.chain.is_ready(),
        }


def build_runtime(
    browser: BrowserAutomation,
    chain: BlockchainClient,
    webhooks: Optional[WebhookDispatcher] = None,
    two_factor: Optional[TwoFactorStore] = None,
    clock: Clock = utc_now,
    pay_to: Optional[str] = None,
) -> PaymentRuntime:
    """Wire services around the given collaborators."""
    webhooks = webhooks or WebhookDispatcher(WEBHOOK_URL, float(WEBHOOK_SETTINGS["timeout_seconds"]))
    two_factor = two_factor or TwoFactorStore()
    guard = DuplicateGuard(clock=clock)
    browser_queue = SequentialJobQueue(BROWSER_QUEUE)
    wallet_queue = SequentialJobQueue(WALLET_QUEUE)
    fiat = FiatOrchestrator(browser, webhooks, two_factor, browser_queue, guard)
    x402 = X402PaymentService(chain, webhooks, wallet_queue, pay_to=pay_to, clock=clock)
    return PaymentRuntime(
        browser=browser,
        chain=chain,
        webhooks=webhooks,
        two_factor=two_factor,
        guard=guard,
        browser_queue=browser_queue,
        wallet_queue=wallet_queue,
        fiat=fiat,
        x402=x402,
        hybrid=HybridPaymentCoordinator(fiat, x402),
    )


def build_default_runtime() -> PaymentRuntime:
    """Production wiring: Econet portal over Playwright, Avalanche facilitator over web3."""
    from app.integrations.avalanche import AvalancheFacilitator
    from app.integrations.econet import EconetPortal

    two_factor = TwoFactorStore()
    return build_runtime(
        browser=EconetPortal(two_factor),
        chain=AvalancheFacilitator(),
        two_factor=two_factor,
    )


__all__ = [
    "PaymentRuntime",
    "build_runtime",
    "build_default_runtime",
    "BROWSER_QUEUE",
    "WALLET_QUEUE",
]

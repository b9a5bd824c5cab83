"""Collaborator interfaces the orchestrators depend on.

Concrete adapters live next to this module (``econet`` for the bank portal,
``avalanche`` for the facilitator wallet); tests substitute in-memory fakes.
"""
from abc import ABC, abstractmethod
from typing import Optional

from app.models.results import SessionResult
from app.models.schemas.x402 import PaymentPayload, PaymentRequirements, SettleResponse, VerifyResponse


class BrowserAutomation(ABC):
    """Drives a single authenticated bank portal session.

    Callers must serialize access (the browser-session queue does); implementations
    keep one page and are not safe for concurrent use.
    """

    async def start(self) -> None:
        """Acquire resources eagerly; default is lazy acquisition on first use."""

    @abstractmethod
    async def close(self) -> None:
        """Release the browser. Must be idempotent."""

    @abstractmethod
    async def ensure_session(self) -> SessionResult:
        """Log in if needed. Returns ``TwoFactorRequired`` instead of raising when
        the portal asks for a code that is not available."""

    @abstractmethod
    async def generate_receipt(self, amount: float, memo: str) -> str:
        """Create a QR for ``amount`` with ``memo``; returns the PNG base64-encoded."""

    @abstractmethod
    async def read_latest_transaction_memo(self) -> str:
        """Return the memo (glosa) of the most recent incoming movement."""


class BlockchainClient(ABC):
    """Facilitator wallet: signature checks, balance/nonce reads, settlement."""

    async def start(self) -> None:
        """Connect to the chain; default is a no-op."""

    async def close(self) -> None:
        """Release connections; default is a no-op."""

    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @property
    @abstractmethod
    def address(self) -> Optional[str]:
        ...

    @abstractmethod
    async def verify_authorization(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResponse:
        """Check signature, payer balance and nonce state. Protocol field rules are
        checked by the caller beforehand."""

    @abstractmethod
    async def settle_authorization(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResponse:
        """Submit ``transferWithAuthorization`` and wait for inclusion."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Token balance of ``address`` in atomic units."""

    @abstractmethod
    def explorer_url(self, tx_hash: str) -> str:
        ...

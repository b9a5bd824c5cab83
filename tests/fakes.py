"""In-memory collaborators and payload builders shared by the test suite."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app.integrations.base import BlockchainClient, BrowserAutomation
from app.models.results import Ok, TwoFactorRequired
from app.models.schemas.webhooks import WebhookEvent
from app.models.schemas.x402 import (
    ExactEvmAuthorization,
    ExactEvmPayload,
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
)
from app.services.two_factor import TwoFactorStore
from app.services.webhooks import WebhookDispatcher
from app.services.x402_protocol import encode_payment_header


PAY_TO = "0x1111111111111111111111111111111111111111"
PAYER = "0x2222222222222222222222222222222222222222"
TX_HASH = "0x" + "ab" * 32
INTERNAL_KEY = "test-internal-key"
QR_IMAGE_B64 = "UVJfSU1BR0U="


# ---------- Collaborator fakes ----------

class FakeClock:
    """Mutable clock; tests move time with ``advance``."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeBrowser(BrowserAutomation):
    """In-memory portal. Tracks overlap so tests can assert serialized access."""

    def __init__(self, two_factor: TwoFactorStore):
        self.two_factor = two_factor
        self.requires_two_factor = False
        self.latest_memo = ""
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0)
        self.active -= 1
        if self.fail_with is not None:
            raise self.fail_with

    async def close(self) -> None:
        self.closed = True

    async def ensure_session(self):
        await self._enter("ensure_session")
        if self.requires_two_factor:
            code = self.two_factor.consume_code()
            if code is None:
                return TwoFactorRequired()
            self.requires_two_factor = False
        return Ok(None)

    async def generate_receipt(self, amount: float, memo: str) -> str:
        await self._enter(f"generate_receipt:{memo}")
        return QR_IMAGE_B64

    async def read_latest_transaction_memo(self) -> str:
        await self._enter("read_latest_transaction_memo")
        return self.latest_memo


class FakeChain(BlockchainClient):
    """Facilitator stand-in: no signatures, configurable verdicts, counted settlements."""

    def __init__(self):
        self.ready = True
        self.verify_reason: Optional[str] = None
        self.settle_error: Optional[str] = None
        self.settle_gate: Optional[asyncio.Event] = None
        self.verify_calls = 0
        self.settle_calls = 0
        self.closed = False

    def is_ready(self) -> bool:
        return self.ready

    @property
    def address(self) -> Optional[str]:
        return PAY_TO if self.ready else None

    async def verify_authorization(self, payload, requirements) -> VerifyResponse:
        self.verify_calls += 1
        payer = payload.payload.authorization.from_address
        if self.verify_reason:
            return VerifyResponse(is_valid=False, invalid_reason=self.verify_reason, payer=payer)
        return VerifyResponse(is_valid=True, payer=payer)

    async def settle_authorization(self, payload, requirements) -> SettleResponse:
        self.settle_calls += 1
        if self.settle_gate is not None:
            await self.settle_gate.wait()
        await asyncio.sleep(0)
        payer = payload.payload.authorization.from_address
        if self.settle_error:
            return SettleResponse(success=False, error_reason=self.settle_error, transaction=TX_HASH, network=requirements.network, payer=payer)
        return SettleResponse(success=True, transaction=TX_HASH, network=requirements.network, payer=payer)

    async def get_balance(self, address: str) -> int:
        return 10**12

    def explorer_url(self, tx_hash: str) -> str:
        return f"https://testnet.snowtrace.io/tx/{tx_hash}"

    async def close(self) -> None:
        self.closed = True


class RecordingWebhookDispatcher(WebhookDispatcher):
    def __init__(self):
        super().__init__(url=None)
        self.events: List[WebhookEvent] = []

    async def dispatch(self, event: WebhookEvent) -> bool:
        self.events.append(event)
        return True

    def types(self) -> List[str]:
        return [e.type for e in self.events]

    def of_type(self, event_type) -> List[WebhookEvent]:
        value = getattr(event_type, "value", event_type)
        return [e for e in self.events if e.type == value]


# ---------- Payload helpers ----------

def make_payment_header(
    requirements: PaymentRequirements,
    now: datetime,
    value: Optional[str] = None,
    to: Optional[str] = None,
    valid_after: Optional[int] = None,
    valid_before: Optional[int] = None,
    x402_version: int = 1,
    scheme: str = "exact",
    network: Optional[str] = None,
    nonce: str = "0x" + "01" * 32,
) -> str:
    ts = int(now.timestamp())
    payload = PaymentPayload(
        x402_version=x402_version,
        scheme=scheme,
        network=network or requirements.network,
        payload=ExactEvmPayload(
            authorization=ExactEvmAuthorization(
                from_address=PAYER,
                to=to or requirements.pay_to,
                value=value or requirements.max_amount_required,
                valid_after=str(valid_after if valid_after is not None else ts - 60),
                valid_before=str(valid_before if valid_before is not None else ts + 600),
                nonce=nonce,
            ),
            signature="0x" + "11" * 65,
        ),
    )
    return encode_payment_header(payload)

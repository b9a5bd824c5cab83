"""Bank-rail job payload structures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from app.models.enums import FiatJobOutcome


@dataclass(slots=True)
class FiatQrJob:
    """A QR generation request as recorded by the duplicate guard."""
    order_id: str
    amount: float
    raw_memo: str
    memo: str  # normalized glosa
    created_at: datetime
    expires_at: datetime
    outcome: FiatJobOutcome = FiatJobOutcome.PENDING
    correlation_id: Optional[str] = None

    def key(self) -> str:
        return f"qr:{self.order_id}"

    def is_active(self, now: datetime) -> bool:
        return self.outcome != FiatJobOutcome.FAILED and now < self.expires_at


@dataclass(slots=True)
class FiatVerificationJob:
    order_id: str
    memo: str
    correlation_id: Optional[str] = None

    def key(self) -> str:
        return f"verify:{self.order_id}"


@dataclass(slots=True)
class FiatJobTicket:
    """What a caller gets back after queueing: the job and the handle that
    resolves to its ``AutomationResult``."""
    job: Union[FiatQrJob, FiatVerificationJob]
    handle: asyncio.Task


__all__ = ["FiatQrJob", "FiatVerificationJob", "FiatJobTicket"]

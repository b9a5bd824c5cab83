"""Duplicate-submission guard for QR generation jobs.

Rules:
1. The memo (glosa) is normalized before anything else: trimmed, uppercased,
   whitespace runs collapsed to ``-``, characters outside ``[A-Z0-9_-]`` dropped.
   The result must be 3..50 characters long, otherwise the request is malformed.
2. A request conflicts when an active entry (younger than the window, not failed)
   exists with the same order id OR the same normalized memo.
3. Accepted requests are recorded with ``expires_at = now + window``. Expired and
   failed entries are evicted lazily on the next lookup; no background sweeper.

Failed entries (automation error or 2FA interrupt) are released immediately so the
same order can be re-queued once the cause is fixed.
"""
from __future__ import annotations

import re
import threading
from datetime import timedelta
from typing import Dict, Optional

from app.config import DUPLICATE_GUARD_SETTINGS
from app.exceptions import ConflictError, ValidationError
from app.jobs.fiat_jobs import FiatQrJob
from app.models.enums import FiatJobOutcome
from app.utils import get_logger
from app.utils.time import Clock, utc_now

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^A-Z0-9_-]")


def normalize_memo(raw: str) -> str:
    """Return the canonical glosa or raise ``ValidationError``."""
    min_len = int(DUPLICATE_GUARD_SETTINGS.get("memo_min_length", 3))
    max_len = int(DUPLICATE_GUARD_SETTINGS.get("memo_max_length", 50))
    normalized = _WHITESPACE.sub("-", (raw or "").strip().upper())
    normalized = _DISALLOWED.sub("", normalized)
    if not (min_len <= len(normalized) <= max_len):
        raise ValidationError(
            f"Glosa must contain between {min_len} and {max_len} characters from [A-Z0-9_-] "
            f"after normalization (got {len(normalized)})"
        )
    return normalized


class DuplicateGuard:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._by_order: Dict[str, FiatQrJob] = {}

    @property
    def window(self) -> timedelta:
        return timedelta(hours=float(DUPLICATE_GUARD_SETTINGS.get("window_hours", 24)))

    def _evict_inactive(self) -> None:
        now = self._clock()
        stale = [order_id for order_id, job in self._by_order.items() if not job.is_active(now)]
        for order_id in stale:
            del self._by_order[order_id]

    def reserve(self, order_id: str, amount: float, raw_memo: str) -> FiatQrJob:
        """Validate and record a QR job, or raise ``ValidationError`` / ``ConflictError``."""
        memo = normalize_memo(raw_memo)
        with self._lock:
            self._evict_inactive()
            if order_id in self._by_order:
                logger.warning("Duplicate QR request for order", order_id=order_id)
                raise ConflictError(f"A QR for order {order_id} was already requested")
            for job in self._by_order.values():
                if job.memo == memo:
                    logger.warning("Duplicate QR request for glosa", order_id=order_id, memo=memo, existing_order_id=job.order_id)
                    raise ConflictError(f"A QR with glosa {memo} already exists")
            now = self._clock()
            job = FiatQrJob(
                order_id=order_id,
                amount=amount,
                raw_memo=raw_memo,
                memo=memo,
                created_at=now,
                expires_at=now + self.window,
            )
            self._by_order[order_id] = job
        logger.info("QR request reserved", order_id=order_id, memo=memo, expires_at=job.expires_at.isoformat())
        return job

    def mark_outcome(self, order_id: str, outcome: FiatJobOutcome) -> None:
        with self._lock:
            job = self._by_order.get(order_id)
            if job is None:
                return
            job.outcome = outcome
            if outcome == FiatJobOutcome.FAILED:
                del self._by_order[order_id]
                logger.info("QR reservation released after failure", order_id=order_id)

    def get(self, order_id: str) -> Optional[FiatQrJob]:
        with self._lock:
            self._evict_inactive()
            return self._by_order.get(order_id)

    def __len__(self) -> int:
        with self._lock:
            self._evict_inactive()
            return len(self._by_order)


__all__ = ["normalize_memo", "DuplicateGuard"]

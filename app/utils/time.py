"""Time utilities (UTC now, epoch seconds, injectable clocks)."""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def epoch_seconds(moment: datetime) -> int:
    return int(moment.timestamp())

__all__ = ["Clock", "utc_now", "epoch_seconds"]

"""Outbound webhook event envelope."""
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pydantic import Field

from app.models.schemas.x402 import CamelModel


class WebhookEvent(CamelModel):
    """Typed event surfaced to the upstream system; emitted, never persisted."""
    type: str
    job_id: Optional[str] = None
    order_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

"""
Base schemas used across the application.
"""
from typing import Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Shape of every error body rendered by the exception handlers."""
    success: bool = False
    message: str
    code: Optional[str] = None
    details: Optional[Any] = None
    request_id: Optional[str] = None

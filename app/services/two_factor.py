"""Process-wide holder for the bank portal's one-time 2FA code.

At most one code exists at a time. Reading it is destructive: ``consume_code``
returns the code and clears the store in one locked step, so two logins can never
use the same code.
"""
from __future__ import annotations

import threading
from typing import Optional

from app.utils import get_logger

logger = get_logger(__name__)


class TwoFactorStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._code: Optional[str] = None

    def set_code(self, code: str) -> None:
        code = code.strip()
        if not code:
            raise ValueError("2FA code must not be empty")
        with self._lock:
            replaced = self._code is not None
            self._code = code
        logger.info("2FA code stored", replaced_previous=replaced)

    def has_code(self) -> bool:
        with self._lock:
            return self._code is not None

    def consume_code(self) -> Optional[str]:
        with self._lock:
            code, self._code = self._code, None
        if code is not None:
            logger.info("2FA code consumed")
        return code


__all__ = ["TwoFactorStore"]

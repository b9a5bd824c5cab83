"""Tagged result variants for browser automation steps.

The bank portal can interrupt a login by asking for a one-time code. That case is a
distinct variant rather than an exception so every caller has to branch on it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class TwoFactorRequired:
    message: str = "A 2FA code is required to continue. Submit it via /set-2fa and retry the job."


@dataclass(frozen=True, slots=True)
class Err:
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__


AutomationResult = Union[Ok[Any], TwoFactorRequired, Err]
SessionResult = Union[Ok[None], TwoFactorRequired]


__all__ = ["Ok", "TwoFactorRequired", "Err", "AutomationResult", "SessionResult"]

from datetime import timedelta

import pytest

from app.exceptions import ConflictError, ValidationError
from app.models.enums import FiatJobOutcome
from app.services.duplicate_guard import DuplicateGuard, normalize_memo
from app.services.two_factor import TwoFactorStore


# ---------- Two-factor store ----------

def test_code_is_consumed_exactly_once():
    store = TwoFactorStore()
    assert store.consume_code() is None
    store.set_code(" 123456 ")
    assert store.has_code() is True
    assert store.consume_code() == "123456"
    assert store.consume_code() is None
    assert store.has_code() is False


def test_latest_code_wins_and_blank_is_rejected():
    store = TwoFactorStore()
    store.set_code("1111")
    store.set_code("2222")
    assert store.consume_code() == "2222"
    with pytest.raises(ValueError):
        store.set_code("   ")


# ---------- Memo normalization ----------

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("  pago orden 123 ", "PAGO-ORDEN-123"),
        ("pago\t\n  orden", "PAGO-ORDEN"),
        ("ab$c", "ABC"),
        ("order_77-x", "ORDER_77-X"),
    ],
)
def test_normalize_memo(raw, expected):
    assert normalize_memo(raw) == expected


@pytest.mark.parametrize("raw", ["", "a!", "$$$$", "x" * 51])
def test_normalize_memo_rejects_out_of_range(raw):
    with pytest.raises(ValidationError):
        normalize_memo(raw)


# ---------- Duplicate guard ----------

def test_same_order_conflicts_within_window(clock):
    guard = DuplicateGuard(clock=clock)
    job = guard.reserve("ORD-1", 10.0, "pago 1")
    assert job.memo == "PAGO-1"
    assert job.expires_at == clock.now + timedelta(hours=24)
    with pytest.raises(ConflictError):
        guard.reserve("ORD-1", 10.0, "other memo")


def test_same_normalized_memo_conflicts_across_orders(clock):
    guard = DuplicateGuard(clock=clock)
    guard.reserve("ORD-1", 10.0, "pago 1")
    with pytest.raises(ConflictError):
        guard.reserve("ORD-2", 5.0, "  PAGO-1 ")


def test_entries_lapse_after_window(clock):
    guard = DuplicateGuard(clock=clock)
    guard.reserve("ORD-1", 10.0, "pago 1")
    clock.advance(hours=23, minutes=59)
    with pytest.raises(ConflictError):
        guard.reserve("ORD-1", 10.0, "pago 1")
    clock.advance(minutes=1)
    again = guard.reserve("ORD-1", 10.0, "pago 1")
    assert again.created_at == clock.now
    assert len(guard) == 1


def test_failed_entry_is_released_immediately(clock):
    guard = DuplicateGuard(clock=clock)
    guard.reserve("ORD-1", 10.0, "pago 1")
    guard.mark_outcome("ORD-1", FiatJobOutcome.FAILED)
    assert guard.get("ORD-1") is None
    guard.reserve("ORD-1", 10.0, "pago 1")


def test_succeeded_entry_still_blocks(clock):
    guard = DuplicateGuard(clock=clock)
    guard.reserve("ORD-1", 10.0, "pago 1")
    guard.mark_outcome("ORD-1", FiatJobOutcome.SUCCEEDED)
    assert guard.get("ORD-1").outcome == FiatJobOutcome.SUCCEEDED
    with pytest.raises(ConflictError):
        guard.reserve("ORD-9", 1.0, "pago 1")

import asyncio
from datetime import timedelta

import pytest

from app.exceptions import (
    ConflictError,
    ExpiredError,
    FacilitatorUnavailableError,
    NotFoundError,
    SettlementFailure,
    ValidationError,
    VerificationFailure,
)
from app.jobs.queue import SequentialJobQueue
from app.models.enums import PaymentStatus, X402WebhookEventType
from app.services import x402_payments
from app.services.x402_payments import X402PaymentService, can_transition
from fakes import PAY_TO, PAYER, TX_HASH, make_payment_header

S = PaymentStatus
E = X402WebhookEventType


def _header(job, clock, **overrides):
    return make_payment_header(job.payment_requirements, clock.now, **overrides)


# ---------- Creation ----------

def test_create_payment_job(runtime, webhooks, clock):
    job = asyncio.run(runtime.x402.create_payment_job("ORD-1", 1.00))
    assert job.job_id.startswith("x402_")
    assert job.status == S.PAYMENT_REQUIRED
    assert job.amount_atomic == "1000000"
    assert job.payment_requirements.max_amount_required == "1000000"
    assert job.payment_requirements.pay_to == PAY_TO
    assert job.expires_at == clock.now + timedelta(seconds=300)
    assert job.requires_manual_confirmation is True
    [event] = webhooks.of_type(E.PAYMENT_REQUIRED)
    assert event.job_id == job.job_id
    assert event.data["paymentRequirements"]["maxAmountRequired"] == "1000000"


@pytest.mark.parametrize("amount", [0, -5.0, 0.0000001])
def test_create_rejects_non_positive_amounts(runtime, amount):
    with pytest.raises(ValidationError):
        asyncio.run(runtime.x402.create_payment_job("ORD-1", amount))


def test_create_without_recipient_is_unavailable(chain, webhooks, clock, monkeypatch):
    monkeypatch.setattr(x402_payments, "X402_PAY_TO_ADDRESS", None)
    chain.ready = False
    service = X402PaymentService(chain, webhooks, SequentialJobQueue("facilitator-wallet"), clock=clock)
    with pytest.raises(FacilitatorUnavailableError):
        asyncio.run(service.create_payment_job("ORD-1", 1.0))


# ---------- Submission ----------

def test_payload_at_expiry_moves_job_to_expired(runtime, chain, webhooks, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00)
        header = _header(job, clock)
        clock.advance(seconds=300)
        with pytest.raises(ExpiredError):
            await runtime.x402.process_payment(job.job_id, header)
        with pytest.raises(ExpiredError):
            await runtime.x402.process_payment(job.job_id, header)
        return runtime.x402.get_job_status(job.job_id)

    job = asyncio.run(main())
    assert job.status == S.EXPIRED
    assert chain.verify_calls == 0
    assert len(webhooks.of_type(E.PAYMENT_EXPIRED)) == 1


def test_short_payment_fails_with_insufficient_amount(runtime, chain, webhooks, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00)
        with pytest.raises(VerificationFailure) as info:
            await runtime.x402.process_payment(job.job_id, _header(job, clock, value="999999"))
        return job, info.value

    job, error = asyncio.run(main())
    assert error.reason == "insufficient_amount"
    assert error.payer == PAYER
    assert runtime.x402.get_job_status(job.job_id).status == S.FAILED
    [event] = webhooks.of_type(E.PAYMENT_FAILED)
    assert event.data["error"] == "insufficient_amount"
    assert chain.verify_calls == 0
    assert chain.settle_calls == 0


def test_undecodable_payload_fails_job(runtime):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00)
        with pytest.raises(VerificationFailure) as info:
            await runtime.x402.process_payment(job.job_id, "definitely not base64 json")
        return job, info.value

    job, error = asyncio.run(main())
    assert error.reason == "invalid_payload"
    assert runtime.x402.get_job_status(job.job_id).status == S.FAILED


def test_chain_rejection_reason_is_kept(runtime, chain, clock):
    chain.verify_reason = "invalid_signature"

    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00)
        with pytest.raises(VerificationFailure) as info:
            await runtime.x402.process_payment(job.job_id, _header(job, clock))
        return info.value

    assert asyncio.run(main()).reason == "invalid_signature"


def test_second_payload_is_rejected(runtime, chain, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00, requires_manual_confirmation=True)
        await runtime.x402.process_payment(job.job_id, _header(job, clock))
        with pytest.raises(ConflictError):
            await runtime.x402.process_payment(job.job_id, _header(job, clock, nonce="0x" + "02" * 32))

    asyncio.run(main())
    assert chain.verify_calls == 1


def test_unknown_job_is_not_found(runtime):
    with pytest.raises(NotFoundError):
        asyncio.run(runtime.x402.process_payment("x402_missing", "e30="))


def test_unready_facilitator_rejects_before_accepting(runtime, chain, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00)
        chain.ready = False
        with pytest.raises(FacilitatorUnavailableError):
            await runtime.x402.process_payment(job.job_id, _header(job, clock))
        return runtime.x402.get_job_status(job.job_id)

    assert asyncio.run(main()).status == S.PAYMENT_REQUIRED


# ---------- Settlement ----------

def test_auto_settlement_completes_job(runtime, chain, webhooks, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00, requires_manual_confirmation=False)
        return job, await runtime.x402.process_payment(job.job_id, _header(job, clock))

    job, outcome = asyncio.run(main())
    assert outcome.success is True
    assert outcome.status == S.COMPLETED
    assert outcome.tx_hash == TX_HASH
    assert outcome.block_explorer_url.endswith(TX_HASH)
    assert outcome.payer == PAYER
    assert chain.settle_calls == 1
    # verified once on submit, once more right before submitting on-chain
    assert chain.verify_calls == 2
    assert webhooks.types() == [
        E.PAYMENT_REQUIRED.value,
        E.PAYMENT_VERIFIED.value,
        E.PAYMENT_SETTLED.value,
    ]
    [settled] = webhooks.of_type(E.PAYMENT_SETTLED)
    assert settled.data["txHash"] == TX_HASH
    assert settled.data["blockExplorerUrl"].endswith(TX_HASH)
    assert runtime.x402.get_job_status(job.job_id).status == S.COMPLETED


def test_manual_confirmation_settles_exactly_once(runtime, chain, webhooks, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 2.50, requires_manual_confirmation=True)
        outcome = await runtime.x402.process_payment(job.job_id, _header(job, clock))
        assert outcome.status == S.AWAITING_CONFIRMATION
        assert outcome.tx_hash is None
        assert chain.settle_calls == 0
        confirmed = await runtime.x402.confirm_payment(job.job_id, "ops@example.com")
        with pytest.raises(ConflictError):
            await runtime.x402.confirm_payment(job.job_id, "ops@example.com")
        return job, confirmed

    job, confirmed = asyncio.run(main())
    assert confirmed.status == S.COMPLETED
    assert chain.settle_calls == 1
    final = runtime.x402.get_job_status(job.job_id)
    assert final.manually_confirmed is True
    assert final.confirmed_by == "ops@example.com"
    [event] = webhooks.of_type(E.PAYMENT_CONFIRMED)
    assert event.data["confirmedBy"] == "ops@example.com"


def test_concurrent_confirmations_settle_once(runtime, chain, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00, requires_manual_confirmation=True)
        await runtime.x402.process_payment(job.job_id, _header(job, clock))
        return await asyncio.gather(
            runtime.x402.confirm_payment(job.job_id, "a"),
            runtime.x402.confirm_payment(job.job_id, "b"),
            return_exceptions=True,
        )

    first, second = asyncio.run(main())
    assert first.status == S.COMPLETED
    assert isinstance(second, ConflictError)
    assert chain.settle_calls == 1


@pytest.mark.parametrize("manual", [False, True])
def test_settlement_survives_cancelled_caller(runtime, chain, webhooks, clock, manual):
    async def main():
        chain.settle_gate = asyncio.Event()
        job = await runtime.x402.create_payment_job("ORD-1", 1.00, requires_manual_confirmation=manual)
        if manual:
            await runtime.x402.process_payment(job.job_id, _header(job, clock))
            caller = asyncio.create_task(runtime.x402.confirm_payment(job.job_id, "ops"))
        else:
            caller = asyncio.create_task(runtime.x402.process_payment(job.job_id, _header(job, clock)))
        for _ in range(50):
            if chain.settle_calls:
                break
            await asyncio.sleep(0)
        assert chain.settle_calls == 1
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        assert runtime.x402.get_job_status(job.job_id).status == S.SETTLING
        chain.settle_gate.set()
        await runtime.wallet_queue.drain()
        return runtime.x402.get_job_status(job.job_id)

    job = asyncio.run(main())
    assert job.status == S.COMPLETED
    assert job.tx_hash == TX_HASH
    assert chain.settle_calls == 1
    assert len(webhooks.of_type(E.PAYMENT_SETTLED)) == 1
    assert runtime.wallet_queue.snapshot()["completed"] == 1


def test_confirm_requires_awaiting_confirmation(runtime):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00)
        with pytest.raises(ConflictError):
            await runtime.x402.confirm_payment(job.job_id, "ops")

    asyncio.run(main())


def test_reverted_settlement_fails_job(runtime, chain, webhooks, clock):
    chain.settle_error = "transaction_reverted"

    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00, requires_manual_confirmation=False)
        with pytest.raises(SettlementFailure) as info:
            await runtime.x402.process_payment(job.job_id, _header(job, clock))
        return job, info.value

    job, error = asyncio.run(main())
    assert error.reason == "transaction_reverted"
    assert error.transaction == TX_HASH
    assert runtime.x402.get_job_status(job.job_id).status == S.FAILED
    assert not webhooks.of_type(E.PAYMENT_SETTLED)


def test_authorization_lapsing_before_confirmation_fails_settlement(runtime, chain, clock):
    async def main():
        job = await runtime.x402.create_payment_job("ORD-1", 1.00, requires_manual_confirmation=True)
        await runtime.x402.process_payment(job.job_id, _header(job, clock))
        # past validBefore (issued +600s); the job's own expiry no longer applies
        clock.advance(seconds=601)
        with pytest.raises(SettlementFailure) as info:
            await runtime.x402.confirm_payment(job.job_id, "ops")
        return job, info.value

    job, error = asyncio.run(main())
    assert error.reason == "authorization_expired"
    assert chain.settle_calls == 0
    assert runtime.x402.get_job_status(job.job_id).status == S.FAILED


# ---------- Inspection ----------

def test_status_is_a_detached_copy(runtime):
    job = asyncio.run(runtime.x402.create_payment_job("ORD-1", 1.00))
    snapshot = runtime.x402.get_job_status(job.job_id)
    snapshot.status = S.COMPLETED
    snapshot.payment_requirements.pay_to = "0xdead"
    fresh = runtime.x402.get_job_status(job.job_id)
    assert fresh.status == S.PAYMENT_REQUIRED
    assert fresh.payment_requirements.pay_to == PAY_TO


def test_order_lookup_returns_latest_job(runtime):
    async def main():
        await runtime.x402.create_payment_job("ORD-1", 1.00)
        return await runtime.x402.create_payment_job("ORD-1", 2.00)

    latest = asyncio.run(main())
    assert runtime.x402.get_job_by_order_id("ORD-1").job_id == latest.job_id
    assert runtime.x402.get_job_by_order_id("ORD-404") is None
    assert runtime.x402.get_job_status("x402_missing") is None


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (S.PAYMENT_REQUIRED, S.PAYMENT_RECEIVED, True),
        (S.PAYMENT_REQUIRED, S.SETTLING, False),
        (S.VERIFIED, S.AWAITING_CONFIRMATION, True),
        (S.VERIFIED, S.SETTLING, True),
        (S.AWAITING_CONFIRMATION, S.SETTLING, True),
        (S.SETTLING, S.FAILED, True),
        (S.VERIFYING, S.EXPIRED, True),
        (S.COMPLETED, S.FAILED, False),
        (S.FAILED, S.PAYMENT_REQUIRED, False),
        (S.EXPIRED, S.EXPIRED, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_health_reports_facilitator(runtime, chain):
    health = runtime.x402.health()
    assert health["facilitatorReady"] is True
    assert health["facilitatorAddress"] == PAY_TO
    chain.ready = False
    assert runtime.x402.health()["status"] == "degraded"

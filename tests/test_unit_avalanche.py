import asyncio

import pytest
from eth_account import Account
from web3 import Web3

from app.integrations.avalanche import (
    AvalancheFacilitator,
    build_typed_data,
    recover_signer,
    split_signature,
)
from app.models.schemas.x402 import (
    ExactEvmAuthorization,
    ExactEvmPayload,
    PaymentPayload,
    PaymentRequirements,
)
from fakes import PAY_TO


def _payload(payer: str, signature: str = "0x" + "00" * 65) -> PaymentPayload:
    return PaymentPayload(
        x402_version=1,
        scheme="exact",
        network="avalanche-fuji",
        payload=ExactEvmPayload(
            authorization=ExactEvmAuthorization(
                from_address=payer,
                to=PAY_TO,
                value="1000000",
                valid_after="0",
                valid_before="1900000000",
                nonce="0x" + "01" * 32,
            ),
            signature=signature,
        ),
    )


def _signed_payload(account) -> PaymentPayload:
    unsigned = _payload(account.address)
    signed = Account.sign_typed_data(account.key, full_message=build_typed_data(unsigned))
    return _payload(account.address, Web3.to_hex(signed.signature))


def test_typed_data_uses_usdc_domain():
    typed = build_typed_data(_payload(PAY_TO))
    assert typed["primaryType"] == "TransferWithAuthorization"
    assert typed["domain"]["name"] == "USD Coin"
    assert typed["domain"]["version"] == "2"
    assert typed["domain"]["chainId"] == 43113
    assert typed["message"]["value"] == 1000000
    assert typed["message"]["nonce"] == bytes([1]) * 32


def test_typed_data_reads_hex_authorization_fields():
    payload = _payload(PAY_TO)
    payload.payload.authorization.value = "0xf4240"
    payload.payload.authorization.valid_before = "0x713fb300"
    message = build_typed_data(payload)["message"]
    assert message["value"] == 1000000
    assert message["validBefore"] == 1900000000


def test_recover_signer_matches_signing_account():
    account = Account.create()
    assert recover_signer(_signed_payload(account)) == account.address


def test_recover_signer_detects_other_payer():
    account = Account.create()
    other = Account.create()
    tampered = _signed_payload(account)
    tampered.payload.authorization.from_address = other.address
    assert recover_signer(tampered) != other.address


def test_split_signature_normalizes_v():
    raw = "0x" + "aa" * 32 + "bb" * 32 + "01"
    v, r, s = split_signature(raw)
    assert v == 28
    assert r == bytes([0xAA]) * 32
    assert s == bytes([0xBB]) * 32
    with pytest.raises(ValueError):
        split_signature("0x1234")


def test_unconfigured_facilitator_reports_not_ready():
    facilitator = AvalancheFacilitator(private_key="")
    requirements = PaymentRequirements(
        scheme="exact",
        network="avalanche-fuji",
        max_amount_required="1000000",
        resource="/api/v1/x402/payment",
        description="test",
        pay_to=PAY_TO,
        max_timeout_seconds=300,
        asset="0x5425890298aed601595a70AB815c96711a31Bc65",
    )

    async def main():
        await facilitator.start()
        verdict = await facilitator.verify_authorization(_payload(PAY_TO), requirements)
        settlement = await facilitator.settle_authorization(_payload(PAY_TO), requirements)
        return verdict, settlement

    verdict, settlement = asyncio.run(main())
    assert facilitator.is_ready() is False
    assert facilitator.address is None
    assert verdict.invalid_reason == "facilitator_not_configured"
    assert settlement.success is False
    assert facilitator.explorer_url("0xabc") == "https://testnet.snowtrace.io/tx/0xabc"

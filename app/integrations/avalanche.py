"""Facilitator wallet on Avalanche (C-Chain) for USDC EIP-3009 authorizations.

The facilitator verifies the payer's EIP-712 ``TransferWithAuthorization``
signature off-chain, reads balance and nonce state from the token contract, and
settles by submitting ``transferWithAuthorization`` itself (paying the gas).

web3.py is synchronous; every RPC round trip is pushed to a worker thread with
``asyncio.to_thread`` so the event loop keeps serving requests while a receipt is
awaited. Submission is serialized by the facilitator-wallet queue upstream, which
keeps the account nonce consistent.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from app.config import X402_FACILITATOR_PRIVATE_KEY, X402_SETTINGS
from app.integrations.base import BlockchainClient
from app.models.schemas.x402 import PaymentPayload, PaymentRequirements, SettleResponse, VerifyResponse
from app.services.x402_protocol import parse_uint
from app.utils import get_logger, log_performance
from app.utils.time import utc_now

logger = get_logger(__name__)

NOT_CONFIGURED = "facilitator_not_configured"

USDC_ABI = [
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "validAfter", "type": "uint256"},
            {"name": "validBefore", "type": "uint256"},
            {"name": "nonce", "type": "bytes32"},
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "authorizer", "type": "address"},
            {"name": "nonce", "type": "bytes32"},
        ],
        "name": "authorizationState",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


def build_typed_data(payload: PaymentPayload) -> Dict[str, Any]:
    """EIP-712 document the payer signed for this authorization."""
    auth = payload.payload.authorization
    return {
        "types": TRANSFER_WITH_AUTHORIZATION_TYPES,
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": X402_SETTINGS["usdc_name"],
            "version": X402_SETTINGS["usdc_version"],
            "chainId": int(X402_SETTINGS["chain_id"]),
            "verifyingContract": Web3.to_checksum_address(X402_SETTINGS["usdc_address"]),
        },
        "message": {
            "from": Web3.to_checksum_address(auth.from_address),
            "to": Web3.to_checksum_address(auth.to),
            "value": parse_uint(auth.value),
            "validAfter": parse_uint(auth.valid_after),
            "validBefore": parse_uint(auth.valid_before),
            "nonce": Web3.to_bytes(hexstr=auth.nonce),
        },
    }


def recover_signer(payload: PaymentPayload) -> str:
    signable = encode_typed_data(full_message=build_typed_data(payload))
    return Account.recover_message(signable, signature=Web3.to_bytes(hexstr=payload.payload.signature))


def split_signature(signature: str) -> Tuple[int, bytes, bytes]:
    """65-byte ``r || s || v`` signature -> (v, r, s) with v normalized to 27/28."""
    raw = Web3.to_bytes(hexstr=signature)
    if len(raw) != 65:
        raise ValueError(f"Signature must be 65 bytes, got {len(raw)}")
    v = raw[64]
    if v < 27:
        v += 27
    return v, raw[:32], raw[32:64]


class AvalancheFacilitator(BlockchainClient):
    def __init__(self, private_key: Optional[str] = None, rpc_url: Optional[str] = None) -> None:
        self._private_key = private_key if private_key is not None else X402_FACILITATOR_PRIVATE_KEY
        self._rpc_url = rpc_url or str(X402_SETTINGS["rpc_url"])
        self._w3: Optional[Web3] = None
        self._account = None
        self._token = None

    async def start(self) -> None:
        if not self._private_key:
            logger.warning("X402_FACILITATOR_PRIVATE_KEY not configured; settlement unavailable")
            return
        key = self._private_key if self._private_key.startswith("0x") else f"0x{self._private_key}"
        try:
            self._account = Account.from_key(key)
        except ValueError as e:
            logger.error("Failed to load facilitator key", error=str(e))
            return
        self._w3 = Web3(Web3.HTTPProvider(self._rpc_url, request_kwargs={"timeout": 30}))
        self._token = self._w3.eth.contract(
            address=Web3.to_checksum_address(X402_SETTINGS["usdc_address"]),
            abi=USDC_ABI,
        )
        logger.info(
            "Facilitator initialized",
            network=X402_SETTINGS["network"],
            chain_id=X402_SETTINGS["chain_id"],
            address=self._account.address,
        )

    def is_ready(self) -> bool:
        return self._account is not None and self._token is not None

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account is not None else None

    def explorer_url(self, tx_hash: str) -> str:
        return f"{str(X402_SETTINGS['block_explorer']).rstrip('/')}/tx/{tx_hash}"

    async def get_balance(self, address: str) -> int:
        if not self.is_ready():
            return 0
        return int(await asyncio.to_thread(self._token.functions.balanceOf(Web3.to_checksum_address(address)).call))

    async def verify_authorization(self, payload: PaymentPayload, requirements: PaymentRequirements) -> VerifyResponse:
        auth = payload.payload.authorization
        payer = auth.from_address
        if not self.is_ready():
            return VerifyResponse(is_valid=False, invalid_reason=NOT_CONFIGURED, payer=payer)
        try:
            signer = recover_signer(payload)
            if signer.lower() != payer.lower():
                logger.warning("Authorization signature does not match payer", payer=payer, signer=signer)
                return VerifyResponse(is_valid=False, invalid_reason="invalid_signature", payer=payer)

            balance = await self.get_balance(payer)
            if balance < parse_uint(auth.value):
                return VerifyResponse(is_valid=False, invalid_reason="insufficient_balance", payer=payer)

            nonce_used = await asyncio.to_thread(
                self._token.functions.authorizationState(
                    Web3.to_checksum_address(payer), Web3.to_bytes(hexstr=auth.nonce)
                ).call
            )
            if nonce_used:
                return VerifyResponse(is_valid=False, invalid_reason="nonce_already_used", payer=payer)
        except Exception as e:
            logger.error("Authorization verification errored", payer=payer, error=str(e))
            return VerifyResponse(is_valid=False, invalid_reason=f"verification_error: {e}", payer=payer)

        logger.info("Authorization verified", payer=payer, to=auth.to, value=auth.value)
        return VerifyResponse(is_valid=True, payer=payer)

    async def settle_authorization(self, payload: PaymentPayload, requirements: PaymentRequirements) -> SettleResponse:
        auth = payload.payload.authorization
        payer = auth.from_address
        network = str(X402_SETTINGS["network"])
        if not self.is_ready():
            return SettleResponse(success=False, error_reason=NOT_CONFIGURED, network=network, payer=payer)

        started = utc_now()
        tx_hash = ""
        try:
            v, r, s = split_signature(payload.payload.signature)
            func = self._token.functions.transferWithAuthorization(
                Web3.to_checksum_address(payer),
                Web3.to_checksum_address(auth.to),
                parse_uint(auth.value),
                parse_uint(auth.valid_after),
                parse_uint(auth.valid_before),
                Web3.to_bytes(hexstr=auth.nonce),
                v,
                r,
                s,
            )
            sender = self._account.address
            nonce = await asyncio.to_thread(self._w3.eth.get_transaction_count, sender, "pending")
            tx = await asyncio.to_thread(
                func.build_transaction,
                {
                    "from": sender,
                    "nonce": nonce,
                    "chainId": int(X402_SETTINGS["chain_id"]),
                    "gas": int(X402_SETTINGS["settle_gas_limit"]),
                },
            )
            signed = self._account.sign_transaction(tx)
            logger.info("Submitting transferWithAuthorization", payer=payer, to=auth.to, value=auth.value)
            raw_hash = await asyncio.to_thread(self._w3.eth.send_raw_transaction, signed.raw_transaction)
            tx_hash = Web3.to_hex(raw_hash)
            receipt = await asyncio.to_thread(
                self._w3.eth.wait_for_transaction_receipt,
                raw_hash,
                timeout=int(X402_SETTINGS["receipt_timeout_seconds"]),
            )
        except Exception as e:
            logger.error("Settlement failed", payer=payer, tx_hash=tx_hash or None, error=str(e))
            return SettleResponse(
                success=False,
                error_reason=f"settlement_error: {e}",
                transaction=tx_hash,
                network=network,
                payer=payer,
            )
        finally:
            log_performance(
                "x402_settle",
                (utc_now() - started).total_seconds() * 1000,
                {"payer": payer, "tx_hash": tx_hash or None},
            )

        if receipt.get("status") == 0:
            logger.error("Settlement transaction reverted", tx_hash=tx_hash, payer=payer)
            return SettleResponse(
                success=False,
                error_reason="transaction_reverted",
                transaction=tx_hash,
                network=network,
                payer=payer,
            )
        logger.info("Settlement confirmed", tx_hash=tx_hash, block_number=receipt.get("blockNumber"))
        return SettleResponse(success=True, transaction=tx_hash, network=network, payer=payer)

    async def close(self) -> None:
        self._token = None
        self._w3 = None


__all__ = ["AvalancheFacilitator", "USDC_ABI", "build_typed_data", "recover_signer", "split_signature"]

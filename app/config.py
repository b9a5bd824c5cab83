"""Core application configuration & tunable payment rules.

Every knob that may change between deployments (chain constants, portal URLs,
duplicate window, webhook delivery) is centralized here so it can be adjusted
without diving into service logic. Values come from environment variables with
safe defaults; settings dicts stay mutable so tests can monkeypatch them.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# ------------------------------ x402 / Chain ------------------------------ #
# Avalanche Fuji testnet with Circle's USDC (EIP-3009 capable).
X402_SETTINGS: dict[str, str | int] = {
	"x402_version": 1,
	"scheme": "exact",
	"network": os.getenv("X402_NETWORK", "avalanche-fuji"),
	"chain_id": int(os.getenv("X402_CHAIN_ID", "43113")),
	"usdc_address": os.getenv("X402_USDC_ADDRESS", "0x5425890298aed601595a70AB815c96711a31Bc65"),
	"usdc_name": "USD Coin",
	"usdc_version": "2",
	"usdc_decimals": 6,
	# Payment window offered to clients; also the job expiry.
	"max_timeout_seconds": int(os.getenv("X402_MAX_TIMEOUT_SECONDS", "300")),
	"rpc_url": os.getenv("X402_RPC_URL", "https://api.avax-test.network/ext/bc/C/rpc"),
	"block_explorer": os.getenv("X402_BLOCK_EXPLORER", "https://testnet.snowtrace.io"),
	"receipt_timeout_seconds": int(os.getenv("X402_RECEIPT_TIMEOUT_SECONDS", "120")),
	"settle_gas_limit": 150_000,
	"default_resource": "/api/v1/x402/payment",
	"mime_type": "application/json",
}

X402_FACILITATOR_PRIVATE_KEY: str | None = os.getenv("X402_FACILITATOR_PRIVATE_KEY") or None
# Address that receives the USDC (merchant wallet).
X402_PAY_TO_ADDRESS: str | None = os.getenv("X402_PAY_TO_ADDRESS") or None

# New jobs default to the human confirmation gate unless the caller opts out.
DEFAULT_REQUIRES_MANUAL_CONFIRMATION: bool = _env_bool("X402_REQUIRE_MANUAL_CONFIRMATION", True)

# ------------------------------ Bank portal ------------------------------- #
_econet_base = os.getenv("ECONET_URL", "https://econet.bancoecofuturo.com.bo:447/EconetWeb")
FIAT_SETTINGS: dict[str, str | int | bool] = {
	"base_url": _econet_base,
	"index_page": os.getenv("INDEX_PAGE", f"{_econet_base}/Inicio/Index"),
	"generate_qr_page": os.getenv("GENERATE_QR_PAGE", f"{_econet_base}/Transferencia/QRGenerar"),
	# Token the bank writes in the memo of QR-originated transfers.
	"verification_marker": os.getenv("FIAT_VERIFICATION_MARKER", "BM QR"),
	"default_timeout_ms": 45_000,
	"element_timeout_ms": 15_000,
	"qr_render_wait_ms": 5_000,
	"headless": _env_bool("BROWSER_HEADLESS", True),
	"chrome_executable_path": os.getenv("CHROME_EXECUTABLE_PATH", ""),
}

ECONET_USER: str | None = os.getenv("ECONET_USER") or None
ECONET_PASS: str | None = os.getenv("ECONET_PASS") or None

# ---------------------------- Duplicate Guard ----------------------------- #
DUPLICATE_GUARD_SETTINGS: dict[str, int] = {
	"window_hours": 24,
	"memo_min_length": 3,
	"memo_max_length": 50,
}

# -------------------------------- Webhooks -------------------------------- #
WEBHOOK_URL: str | None = os.getenv("WEBHOOK_URL") or None
WEBHOOK_SETTINGS: dict[str, float] = {
	"timeout_seconds": float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10")),
}

# ------------------------------ Internal auth ----------------------------- #
# Shared secret for privileged operations (/set-2fa, /confirm). Sent as
# X-Internal-API-Key. Unset means privileged endpoints reject every call.
INTERNAL_API_KEY: str | None = os.getenv("INTERNAL_API_KEY") or None

__all__ = [
	"X402_SETTINGS",
	"X402_FACILITATOR_PRIVATE_KEY",
	"X402_PAY_TO_ADDRESS",
	"DEFAULT_REQUIRES_MANUAL_CONFIRMATION",
	"FIAT_SETTINGS",
	"ECONET_USER",
	"ECONET_PASS",
	"DUPLICATE_GUARD_SETTINGS",
	"WEBHOOK_URL",
	"WEBHOOK_SETTINGS",
	"INTERNAL_API_KEY",
]

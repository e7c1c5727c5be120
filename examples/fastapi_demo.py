"""
s402 FastAPI Demo

Complete working example of signed, ledger-verified payment gates with FastAPI.

Run:
    pip install -e ".[demo]"
    S402_PAY_TO="<server address>" S402_CLIENT_PUBKEY="<base58 signing key>" \
        python examples/fastapi_demo.py

Or without a real ledger (uses an in-memory mock that treats every client
as having paid 0.002 SOL a moment ago):
    python examples/fastapi_demo.py
"""

import logging
import os
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, Request

from s402 import (
    LedgerTransfer,
    PaymentType,
    SOLANA_DEVNET,
    SolanaLedger,
    StakeDelegation,
    create_gate,
    create_payment_config,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("s402.demo")


# --- Mock ledger for demo (when no S402_RPC_URL is provided) ---


class MockLedger:
    """In-memory ledger where every client has one recent payment."""

    async def query_transfers(self, sender: str, recipient: str, limit: int = 20):
        return [
            LedgerTransfer(
                id=f"demo-{sender[:8]}",
                amount=0.002,
                timestamp=time.time() - 10,
                sender=sender,
                recipient=recipient,
            )
        ]

    async def query_token_transfers(self, sender: str, recipient: str, token_id: str, limit: int = 20):
        return []

    async def query_stake_delegations(self, address: str, validator: str):
        return StakeDelegation(total_delegated=0.0, is_active=False)

    async def get_balance(self, address: str) -> float:
        return 1.0


# --- Setup ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await gate.close()


app = FastAPI(
    lifespan=lifespan,
    title="s402 Demo",
    description="Signed, ledger-verified payment gates with FastAPI",
    version="0.1.0",
)

pay_to = os.environ.get("S402_PAY_TO", "11111111111111111111111111111112")
client_pubkey = os.environ.get("S402_CLIENT_PUBKEY")
rpc_url = os.environ.get("S402_RPC_URL")

if rpc_url:
    ledger = SolanaLedger(SOLANA_DEVNET, rpc_url=rpc_url)
    logger.info("Using Solana RPC at %s", rpc_url)
else:
    ledger = MockLedger()
    logger.info("Using mock ledger (set S402_RPC_URL for real verification)")

gate = create_gate(
    payment_options=[
        create_payment_config(pay_to, 0.001, 60),
        create_payment_config(pay_to, 0.1, 60, payment_type=PaymentType.TOKEN),
    ],
    public_key=client_pubkey,
    require_signature=client_pubkey is not None,
    ledger=ledger,
)


# --- Routes ---


@app.get("/")
async def root():
    """Welcome page with available endpoints."""
    return {
        "service": "s402 demo",
        "description": "Pay on-chain, get time-bounded API access",
        "endpoints": {
            "GET /api/time": {"price": "0.001 SOL / minute", "description": "Current server time"},
            "POST /api/echo": {"price": "0.001 SOL / minute", "description": "Echo the JSON body"},
            "GET /api/report": {"price": "0.1 USDC / minute", "description": "Decorator-gated route"},
            "GET /api/stats": {"price": "Free", "description": "Gate dashboard"},
        },
        "how_to_pay": {
            "step1": "Call a gated endpoint with your public key in x-client-pubkey",
            "step2": "On 402, transfer the listed amount to payTo",
            "step3": "Retry; access lasts while your credits do",
        },
    }


@app.get("/api/time")
async def server_time(payment=Depends(gate())):
    """Get current server time."""
    import datetime

    now = datetime.datetime.now(datetime.timezone.utc)
    return {
        "time": now.isoformat(),
        "unix": int(now.timestamp()),
        "payment": payment,
    }


@app.post("/api/echo")
async def echo(request: Request, payment=Depends(gate())):
    """Echo the request body back."""
    return {"echo": await request.json(), "payment": payment}


@app.get("/api/report")
@gate.require(payment_options=[create_payment_config(pay_to, 0.1, 60, payment_type=PaymentType.TOKEN)])
async def report(request: Request, payment=None):
    """USDC-only report, gated with the decorator."""
    return {"report": "all systems nominal", "payment": payment}


app.add_api_route("/api/stats", gate.dashboard())


# --- Run ---

if __name__ == "__main__":
    print("\ns402 FastAPI Demo")
    print("=" * 40)
    print("Endpoints:")
    print("  GET  /            - Welcome page")
    print("  GET  /api/time    - 0.001 SOL / minute")
    print("  POST /api/echo    - 0.001 SOL / minute")
    print("  GET  /api/report  - 0.1 USDC / minute")
    print("  GET  /api/stats   - Free dashboard")
    print()
    print("Test:")
    print("  curl -H 'x-client-pubkey: <your key>' http://localhost:8402/api/time")
    print()
    uvicorn.run(app, host="0.0.0.0", port=8402)

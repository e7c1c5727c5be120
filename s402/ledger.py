"""
Read-only ledger access.

LedgerAdapter is the query surface the payment rails depend on. SolanaLedger
implements it over Solana JSON-RPC using httpx.

Adapters raise LedgerError on any transport, RPC or data problem; the
payment verifier turns that into "no credits" (fail closed).
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .errors import LedgerError
from .models import LedgerTransfer, StakeDelegation

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
STAKE_PROGRAM_ID = "Stake11111111111111111111111111111111111111"
STAKER_AUTHORITY_OFFSET = 12
U64_MAX = "18446744073709551615"

USDC_DEVNET_MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"
USDC_MAINNET_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_DECIMALS = 6

SOLANA_DEVNET = "solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1"
SOLANA_MAINNET = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"
SOLANA_TESTNET = "solana:4uhcVJyU9pJkvQyS88uRDiswHXSCkY3z"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
TESTNET_RPC_URL = "https://api.testnet.solana.com"

_RPC_URLS = {
    "EtWTRABZaYq6iMfeYKouRu166VU2xqa1": DEVNET_RPC_URL,
    "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp": MAINNET_RPC_URL,
    "4uhcVJyU9pJkvQyS88uRDiswHXSCkY3z": TESTNET_RPC_URL,
    "devnet": DEVNET_RPC_URL,
    "mainnet": MAINNET_RPC_URL,
    "mainnet-beta": MAINNET_RPC_URL,
    "testnet": TESTNET_RPC_URL,
}


class LedgerAdapter(Protocol):
    """Read-only ledger queries used for payment verification."""

    async def query_transfers(
        self, sender: str, recipient: str, limit: int
    ) -> List[LedgerTransfer]:
        ...

    async def query_token_transfers(
        self, sender: str, recipient: str, token_id: str, limit: int
    ) -> List[LedgerTransfer]:
        ...

    async def query_stake_delegations(self, address: str, validator: str) -> StakeDelegation:
        ...

    async def get_balance(self, address: str) -> float:
        ...


def get_rpc_url_for_network(
    network: str,
    overrides: Optional[Dict[str, str]] = None,
) -> str:
    """
    Map a network identifier to an RPC URL.

    Accepts CAIP-2 ids (solana:<genesis>), cluster names (devnet, mainnet,
    testnet) and literal http(s) URLs. Unknown networks map to devnet.
    """
    if overrides and network in overrides:
        return overrides[network]
    if network.startswith(("http://", "https://")):
        return network

    chain_id = network.split(":", 1)[1] if ":" in network else network
    if overrides and chain_id in overrides:
        return overrides[chain_id]
    return _RPC_URLS.get(chain_id, DEVNET_RPC_URL)


def _account_keys(tx: Dict[str, Any]) -> List[str]:
    keys = tx["transaction"]["message"]["accountKeys"]
    return [k["pubkey"] if isinstance(k, dict) else k for k in keys]


def _token_amount(balances: List[Dict[str, Any]], owner: str, mint: str) -> Optional[int]:
    for balance in balances:
        if balance.get("owner") == owner and balance.get("mint") == mint:
            return int(balance["uiTokenAmount"]["amount"])
    return None


def _token_decimals(balances: List[Dict[str, Any]], mint: str) -> int:
    for balance in balances:
        if balance.get("mint") == mint:
            return int(balance["uiTokenAmount"]["decimals"])
    return USDC_DECIMALS


def extract_lamport_transfer(tx: Dict[str, Any], sender: str, recipient: str) -> float:
    """Amount in SOL the recipient gained in a transaction signed by sender."""
    keys = _account_keys(tx)
    if sender not in keys or recipient not in keys:
        return 0.0
    idx = keys.index(recipient)
    meta = tx["meta"]
    change = meta["postBalances"][idx] - meta["preBalances"][idx]
    if change > 0:
        return change / LAMPORTS_PER_SOL
    return 0.0


def extract_token_transfer(tx: Dict[str, Any], sender: str, recipient: str, mint: str) -> float:
    """Token amount moved from sender's to recipient's token account."""
    meta = tx["meta"]
    pre = meta.get("preTokenBalances") or []
    post = meta.get("postTokenBalances") or []

    sender_pre = _token_amount(pre, sender, mint)
    sender_post = _token_amount(post, sender, mint)
    recipient_post = _token_amount(post, recipient, mint)
    if sender_pre is None or sender_post is None or recipient_post is None:
        return 0.0
    # A freshly created recipient account has no pre balance.
    recipient_pre = _token_amount(pre, recipient, mint) or 0

    decrease = sender_pre - sender_post
    increase = recipient_post - recipient_pre
    raw = max(0, min(decrease, increase))
    return raw / (10 ** _token_decimals(post, mint))


class SolanaLedger:
    """
    Solana JSON-RPC ledger adapter.

    Usage:
        async with SolanaLedger("solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1") as ledger:
            transfers = await ledger.query_transfers(client, server, 20)
    """

    def __init__(
        self,
        network: str = SOLANA_DEVNET,
        rpc_url: Optional[str] = None,
        commitment: str = "confirmed",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.network = network
        self.rpc_url = rpc_url or get_rpc_url_for_network(network)
        self.commitment = commitment
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise LedgerError(f"RPC {method} failed: {e}") from e
        except ValueError as e:
            raise LedgerError(f"RPC {method} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise LedgerError(f"RPC {method} returned a malformed response")
        if body.get("error"):
            error = body["error"]
            message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
            raise LedgerError(f"RPC {method} error: {message}", details={"error": error})
        if "result" not in body:
            raise LedgerError(f"RPC {method} response missing 'result'")
        return body["result"]

    async def _signatures(self, address: str, limit: int) -> List[Dict[str, Any]]:
        result = await self._rpc(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        return [s for s in result or [] if not s.get("err")]

    async def _transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        tx = await self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self.commitment,
                },
            ],
        )
        if not tx or not tx.get("meta") or tx["meta"].get("err"):
            return None
        return tx

    async def query_transfers(
        self, sender: str, recipient: str, limit: int = 20
    ) -> List[LedgerTransfer]:
        """Most recent SOL transfers from sender to recipient."""
        transfers: List[LedgerTransfer] = []
        try:
            for sig in await self._signatures(sender, limit):
                tx = await self._transaction(sig["signature"])
                if tx is None:
                    continue
                amount = extract_lamport_transfer(tx, sender, recipient)
                if amount > 0:
                    transfers.append(
                        LedgerTransfer(
                            id=sig["signature"],
                            amount=amount,
                            timestamp=float(sig.get("blockTime") or tx.get("blockTime") or 0),
                            sender=sender,
                            recipient=recipient,
                        )
                    )
        except (KeyError, IndexError, TypeError) as e:
            raise LedgerError(f"Malformed transaction data: {e}") from e

        logger.debug("Found %d SOL transfers %s -> %s", len(transfers), sender, recipient)
        return sorted(transfers, key=lambda t: t.timestamp, reverse=True)

    async def query_token_transfers(
        self, sender: str, recipient: str, token_id: str, limit: int = 20
    ) -> List[LedgerTransfer]:
        """Most recent token transfers of mint token_id from sender to recipient."""
        transfers: List[LedgerTransfer] = []
        try:
            for sig in await self._signatures(sender, limit):
                tx = await self._transaction(sig["signature"])
                if tx is None:
                    continue
                amount = extract_token_transfer(tx, sender, recipient, token_id)
                if amount > 0:
                    transfers.append(
                        LedgerTransfer(
                            id=sig["signature"],
                            amount=amount,
                            timestamp=float(sig.get("blockTime") or tx.get("blockTime") or 0),
                            sender=sender,
                            recipient=recipient,
                        )
                    )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LedgerError(f"Malformed token transaction data: {e}") from e

        logger.debug("Found %d token transfers %s -> %s", len(transfers), sender, recipient)
        return sorted(transfers, key=lambda t: t.timestamp, reverse=True)

    async def query_stake_delegations(self, address: str, validator: str) -> StakeDelegation:
        """Active stake that address (as staker) has delegated to validator."""
        accounts = await self._rpc(
            "getProgramAccounts",
            [
                STAKE_PROGRAM_ID,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "filters": [
                        {"memcmp": {"offset": STAKER_AUTHORITY_OFFSET, "bytes": address}}
                    ],
                },
            ],
        )

        total = 0
        matched: List[str] = []
        try:
            for account in accounts or []:
                data = account["account"]["data"]
                if not isinstance(data, dict) or "parsed" not in data:
                    continue
                stake = (data["parsed"].get("info") or {}).get("stake")
                if not stake or not stake.get("delegation"):
                    continue
                delegation = stake["delegation"]
                if delegation.get("voter") != validator:
                    continue
                if str(delegation.get("deactivationEpoch")) != U64_MAX:
                    continue
                total += int(delegation["stake"])
                matched.append(account["pubkey"])
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerError(f"Malformed stake account data: {e}") from e

        return StakeDelegation(
            total_delegated=total / LAMPORTS_PER_SOL,
            is_active=total > 0,
            accounts=matched,
        )

    async def get_balance(self, address: str) -> float:
        """SOL balance of address."""
        result = await self._rpc("getBalance", [address, {"commitment": self.commitment}])
        try:
            return result["value"] / LAMPORTS_PER_SOL
        except (KeyError, TypeError) as e:
            raise LedgerError(f"Malformed balance response: {e}") from e

    async def close(self) -> None:
        """Close the underlying HTTP client if we created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SolanaLedger":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

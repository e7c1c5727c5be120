"""
Signing, auto-paying fetch wrapper for s402-gated APIs.

Every request carries the client's public key (x-client-pubkey header and,
for JSON bodies, the clientPublicKey field) and an RFC 9421 signature when a
private key is configured. When an endpoint returns 402 and auto payment is
enabled, the client pays the first option its wallet supports, waits for
the ledger to confirm and retries once.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from ..keys import export_public_key, import_public_key, public_key_from_private
from ..models import HttpRequest, PaymentOption, PaymentType
from ..protocol import CLIENT_PUBKEY_FIELD, CLIENT_PUBKEY_HEADER, parse_payment_required
from ..signatures import add_signature_headers, sign_request

logger = logging.getLogger(__name__)


@dataclass
class S402Response:
    """Response from an s402-gated request."""
    status_code: int
    headers: Dict[str, str]
    body: Any
    paid: bool = False
    payment_type: Optional[str] = None
    amount: float = 0.0
    transaction: Optional[str] = None  # payment transaction signature

    def json(self) -> Any:
        """Return body as parsed JSON (already parsed)."""
        return self.body

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def _read_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _payment_options(body: Any) -> List[PaymentOption]:
    # FastAPI wraps HTTPException details in {"detail": ...}
    if isinstance(body, dict) and "paymentOptions" not in body and isinstance(body.get("detail"), dict):
        body = body["detail"]
    return parse_payment_required(body)


class S402Client:
    """
    Client for s402-gated APIs.

    Usage:
        client = S402Client(private_key=key, auto_payment=True, wallet=wallet)
        response = await client.fetch("https://api.example.com/data")
        data = response.json()
    """

    def __init__(
        self,
        private_key: Union[bytes, None] = None,
        public_key: Union[str, bytes, None] = None,
        key_id: str = "default",
        sign_requests: bool = True,
        auto_payment: bool = False,
        wallet: Optional[Any] = None,
        ledger: Optional[Any] = None,
        max_price: Optional[float] = None,
        confirmation_delay: float = 2.0,
        headers: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the S402Client.

        Args:
            private_key: Raw 32-byte Ed25519 key used for signing.
            public_key: Client identity (base58 string or raw bytes). Derived
                from private_key when omitted.
            key_id: keyid parameter placed in signatures.
            sign_requests: Sign requests when a private key is available.
            auto_payment: Pay and retry on 402.
            wallet: Object with async send_payment(option) -> str.
            ledger: Optional ledger adapter for balance checks before paying.
            max_price: Budget cap per payment.
            confirmation_delay: Seconds to wait after paying before retrying.
            headers: Default headers for all requests.
            http_client: Pre-created httpx.AsyncClient.
        """
        if private_key is None and public_key is None:
            raise ValueError("S402Client: private_key or public_key is required")
        if auto_payment and wallet is None:
            raise ValueError("S402Client: wallet is required when auto_payment is enabled")

        if isinstance(public_key, str):
            public_key = import_public_key(public_key)
        if public_key is None:
            public_key = public_key_from_private(private_key)

        self.private_key = private_key
        self.public_key: bytes = public_key
        self.client_id = export_public_key(public_key)
        self.key_id = key_id
        self.sign_requests = sign_requests and private_key is not None
        self.auto_payment = auto_payment
        self.wallet = wallet
        self.ledger = ledger
        self.max_price = max_price
        self.confirmation_delay = confirmation_delay
        self.default_headers = headers or {}

        self._http = http_client
        self._owns_http = http_client is None

        # Track spending
        self.total_spent = 0.0
        self.request_count = 0
        self.payment_count = 0

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    def prepare_request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> HttpRequest:
        """
        Build the outgoing request: identity, JSON body and signature headers.

        Returns:
            HttpRequest whose headers and body are sent as-is.
        """
        method = method.upper()
        req_headers = {**self.default_headers, **(headers or {})}
        req_headers[CLIENT_PUBKEY_HEADER] = self.client_id

        content: Optional[Union[str, bytes]] = None
        if isinstance(body, dict):
            content = json.dumps({**body, CLIENT_PUBKEY_FIELD: self.client_id})
            req_headers.setdefault("content-type", "application/json")
        elif body is None and method not in ("GET", "HEAD"):
            content = json.dumps({CLIENT_PUBKEY_FIELD: self.client_id})
            req_headers.setdefault("content-type", "application/json")
        elif body is not None:
            content = body

        request = HttpRequest(method=method, url=url, headers=req_headers, body=content)

        if self.sign_requests:
            components = sign_request(request, self.private_key, key_id=self.key_id)
            request.headers = add_signature_headers(request.headers, components)

        return request

    async def _send(self, request: HttpRequest) -> httpx.Response:
        return await self.http.request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.body,
        )

    def _select_option(self, options: List[PaymentOption]) -> Optional[PaymentOption]:
        supports = getattr(self.wallet, "supports", None)
        for option in options:
            if option.payment_type == PaymentType.STAKE:
                continue
            if supports is None or supports(option.payment_type):
                return option
        return None

    async def _pay(self, option: PaymentOption) -> str:
        price = option.subscription_price
        if self.max_price is not None and price > self.max_price:
            raise RuntimeError(
                f"s402/client: Price {price} exceeds budget of {self.max_price}"
            )

        if self.ledger is not None and option.payment_type == PaymentType.VALUE:
            balance = await self.ledger.get_balance(self.client_id)
            if balance < price:
                raise RuntimeError(
                    f"s402/client: Insufficient balance ({balance} < {price})"
                )

        logger.info(
            "Paying %s %s to %s", price, option.payment_type.value, option.pay_to,
        )
        transaction = await self.wallet.send_payment(option)
        if not transaction:
            raise RuntimeError("s402/client: Payment failed, no transaction signature returned")
        return transaction

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        auto_payment: Optional[bool] = None,
    ) -> S402Response:
        """
        Fetch a URL with signing and optional automatic payment.

        Args:
            url: URL to fetch.
            method: HTTP method.
            headers: Additional headers (merged with defaults).
            body: Request body. Dicts are sent as JSON with the client's
                public key added.
            auto_payment: Override auto payment for this request.

        Returns:
            S402Response with status, headers, body, and payment info.

        Raises:
            RuntimeError: If payment is needed but no option can be paid.
        """
        self.request_count += 1
        pay = auto_payment if auto_payment is not None else self.auto_payment

        response = await self._send(self.prepare_request(url, method, headers, body))
        resp_body = _read_body(response)

        if response.status_code != 402 or not pay:
            return S402Response(
                status_code=response.status_code,
                headers=dict(response.headers),
                body=resp_body,
            )

        options = _payment_options(resp_body)
        if not options:
            raise RuntimeError("s402/client: 402 response has no payment options")

        option = self._select_option(options)
        if option is None:
            raise RuntimeError("s402/client: No supported payment option offered")

        transaction = await self._pay(option)
        self.payment_count += 1
        self.total_spent += option.subscription_price

        if self.confirmation_delay > 0:
            await asyncio.sleep(self.confirmation_delay)

        # Re-sign: the created parameter and body must be fresh for the retry
        retry = await self._send(self.prepare_request(url, method, headers, body))

        return S402Response(
            status_code=retry.status_code,
            headers=dict(retry.headers),
            body=_read_body(retry),
            paid=True,
            payment_type=option.payment_type.value,
            amount=option.subscription_price,
            transaction=transaction,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get spending statistics."""
        return {
            "client_id": self.client_id,
            "total_spent": self.total_spent,
            "request_count": self.request_count,
            "payment_count": self.payment_count,
        }

    async def close(self, close_wallet: bool = True) -> None:
        """Close the HTTP client and, unless told otherwise, the wallet."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        if close_wallet and hasattr(self.wallet, "close"):
            await self.wallet.close()


async def s402_fetch(
    url: str,
    private_key: Union[bytes, None] = None,
    public_key: Union[str, bytes, None] = None,
    wallet: Optional[Any] = None,
    max_price: Optional[float] = None,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Any = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> S402Response:
    """
    One-shot s402 fetch.

    Signs the request when a private key is given and pays automatically
    when a wallet is given.

    Args:
        url: URL to fetch.
        private_key: Raw Ed25519 private key for signing.
        public_key: Client identity when not signing.
        wallet: Wallet used to pay on 402.
        max_price: Maximum price to pay.
        method: HTTP method.
        headers: Request headers.
        body: Request body.
        http_client: Pre-created httpx.AsyncClient.

    Returns:
        S402Response with status, headers, body, and payment info.
    """
    client = S402Client(
        private_key=private_key,
        public_key=public_key,
        auto_payment=wallet is not None,
        wallet=wallet,
        max_price=max_price,
        http_client=http_client,
    )
    try:
        return await client.fetch(url, method=method, headers=headers, body=body)
    finally:
        await client.close(close_wallet=False)

"""
s402 wire formats.

402 response body:
    {"error": "Payment Required", "message": "...", "paymentOptions": [...]}

Client identity travels in the x-client-pubkey header or in the
clientPublicKey field of a JSON body.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .models import HttpRequest, PaymentConfig, PaymentOption, PaymentType

CLIENT_PUBKEY_HEADER = "x-client-pubkey"
CLIENT_PUBKEY_FIELD = "clientPublicKey"

PAYMENT_REQUIRED_ERROR = "Payment Required"
PAYMENT_REQUIRED_MESSAGE = "Please send payment using one of the available methods"


def format_payment_required(
    options: Sequence[Union[PaymentConfig, PaymentOption]],
    message: str = PAYMENT_REQUIRED_MESSAGE,
) -> Dict[str, Any]:
    """
    Format a 402 response body listing every payment option.

    Args:
        options: Configured options (configs are projected to PaymentOption).
        message: Human-readable message.

    Returns:
        Dict suitable for a JSON response.
    """
    projected = [o.to_option() if isinstance(o, PaymentConfig) else o for o in options]
    return {
        "error": PAYMENT_REQUIRED_ERROR,
        "message": message,
        "paymentOptions": [o.to_dict() for o in projected],
    }


def parse_payment_required(body: Any) -> List[PaymentOption]:
    """
    Parse the payment options out of a 402 response body.

    Returns:
        List of PaymentOption (empty if the body is not an s402 challenge).
    """
    if not isinstance(body, dict):
        return []
    options = []
    for raw in body.get("paymentOptions") or []:
        try:
            options.append(PaymentOption.from_dict(raw))
        except (KeyError, TypeError, ValueError):
            continue
    return options


def _body_identity(body: Optional[Union[str, bytes]]) -> Optional[str]:
    if not body:
        return None
    try:
        parsed = json.loads(body)
    except ValueError:
        return None
    if isinstance(parsed, dict):
        value = parsed.get(CLIENT_PUBKEY_FIELD)
        if isinstance(value, str) and value:
            return value
    return None


def extract_client_identity(request: HttpRequest) -> Tuple[Optional[str], Optional[str]]:
    """
    Find the client's public identity.

    Returns:
        (identity, None) on success, (None, error message) otherwise.
    """
    header = (request.headers.get(CLIENT_PUBKEY_HEADER) or "").strip() or None
    body = request.client_public_key or _body_identity(request.body)

    if header and body and header != body:
        return None, "Conflicting client public keys in header and body"
    identity = header or body
    if not identity:
        return None, (
            f"Client public key required in request body ({CLIENT_PUBKEY_FIELD}) "
            f"or {CLIENT_PUBKEY_HEADER} header"
        )
    return identity, None


def amount_to_decimal_string(amount: float) -> str:
    """Format an amount without scientific notation."""
    text = f"{amount:.12f}".rstrip("0").rstrip(".")
    return text or "0"


def payment_option_to_x402_accept(option: PaymentOption) -> Dict[str, Any]:
    """Convert a payment option into an x402 'accepts' entry."""
    requirements: Dict[str, Any] = {
        "scheme": "exact",
        "network": option.network,
        "amount": amount_to_decimal_string(option.subscription_price),
        "destination": option.pay_to,
    }
    if option.payment_type == PaymentType.TOKEN and option.token_mint:
        requirements["asset"] = option.token_mint
    return {"paymentRequirements": requirements}

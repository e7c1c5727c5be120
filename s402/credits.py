"""
Payment-to-credit conversion.

Metered rails convert the sum of recent payments into access time at a
linear rate (subscription_price buys subscription_time seconds), anchored
at the most recent payment. Staking is a binary gate with a fixed grant.
"""

from __future__ import annotations

import time
from typing import Optional, Sequence

from .errors import PaymentError, PaymentErrorCode
from .models import ClientCredits, LedgerTransfer, TransactionRef

STAKE_VALIDITY_SECONDS = 365 * 24 * 60 * 60
STAKE_TRANSACTION_ID = "stake-account"


def calculate_time_for_payment(
    amount: float,
    subscription_price: float,
    subscription_time: float,
) -> float:
    """Seconds of access bought by amount."""
    if subscription_price <= 0 or subscription_time <= 0:
        raise PaymentError(
            PaymentErrorCode.INVALID_RATE_CONFIG,
            "subscription_price and subscription_time must be greater than 0",
        )
    return (amount / subscription_price) * subscription_time


def calculate_minimum_payment(subscription_price: float, subscription_time: float) -> float:
    """Smallest payment covering one subscription period."""
    return subscription_price


def calculate_credits(
    transfers: Sequence[LedgerTransfer],
    subscription_price: float,
    subscription_time: float,
    now: Optional[float] = None,
) -> Optional[ClientCredits]:
    """
    Convert a window of transfers into credits.

    Args:
        transfers: Confirmed transfers from client to server (any order).
        subscription_price: Price of one subscription period.
        subscription_time: Length of one subscription period in seconds.
        now: Current time (defaults to time.time()).

    Returns:
        ClientCredits, or None if there are no transfers. The credits may
        have time_remaining == 0 if they already ran out.

    Raises:
        PaymentError: INVALID_RATE_CONFIG if price or time is not positive.
    """
    if not transfers:
        return None

    total_paid = sum(t.amount for t in transfers)
    granted = calculate_time_for_payment(total_paid, subscription_price, subscription_time)

    latest = max(transfers, key=lambda t: t.timestamp)
    expires_at = latest.timestamp + granted

    current = now if now is not None else time.time()
    return ClientCredits(
        time_remaining=max(0.0, expires_at - current),
        expires_at=expires_at,
        last_transaction=TransactionRef(
            signature=latest.id,
            amount=latest.amount,
            timestamp=latest.timestamp,
        ),
    )


def calculate_stake_credits(
    total_delegated: float,
    now: Optional[float] = None,
    validity: float = STAKE_VALIDITY_SECONDS,
) -> ClientCredits:
    """Fixed-length grant for a client whose stake meets the minimum."""
    current = now if now is not None else time.time()
    return ClientCredits(
        time_remaining=validity,
        expires_at=current + validity,
        last_transaction=TransactionRef(
            signature=STAKE_TRANSACTION_ID,
            amount=total_delegated,
            timestamp=current,
        ),
    )


def has_valid_credits(credits: Optional[ClientCredits], now: Optional[float] = None) -> bool:
    """Check whether credits still grant access at now."""
    if credits is None:
        return False
    current = now if now is not None else time.time()
    if current >= credits.expires_at:
        return False
    if credits.time_remaining <= 0:
        return False
    return True

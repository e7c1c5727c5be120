"""
Payment verification.

PaymentVerifier routes a payment config to its rail, queries the ledger and
returns the derived credits. Verification fails closed: any ledger or rail
error yields an invalid result, never a grant. There is no retry; a failed
query is simply a failed verification for this request.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .credits import has_valid_credits
from .errors import PaymentError, PaymentErrorCode
from .ledger import SOLANA_DEVNET, LedgerAdapter, SolanaLedger
from .models import ClientCredits, PaymentConfig, PaymentType
from .rails import DEFAULT_TRANSFER_LIMIT, RailRegistry, default_registry

logger = logging.getLogger(__name__)


@dataclass
class PaymentVerificationResult:
    """Result of verifying one payment option for a client."""
    valid: bool
    credits: Optional[ClientCredits] = None
    error: Optional[str] = None
    error_code: Optional[PaymentErrorCode] = None
    requires_payment: bool = False


def _invalid(code: PaymentErrorCode, error: str) -> PaymentVerificationResult:
    return PaymentVerificationResult(
        valid=False,
        error=error,
        error_code=code,
        requires_payment=True,
    )


class PaymentVerifier:
    """
    Verifies client payments against the ledger.

    Args:
        ledger: Adapter used for every network. When omitted, a SolanaLedger
            is created per network on first use.
        registry: Rail registry (defaults to VALUE, TOKEN and STAKE).
        transfer_limit: Recent-transfer window size for the default registry.
        clock: Time source.
        ledger_factory: Builds an adapter for a network when no ledger is given.
    """

    def __init__(
        self,
        ledger: Optional[LedgerAdapter] = None,
        registry: Optional[RailRegistry] = None,
        transfer_limit: int = DEFAULT_TRANSFER_LIMIT,
        clock: Callable[[], float] = time.time,
        ledger_factory: Callable[[str], Any] = SolanaLedger,
    ):
        self._ledger = ledger
        self._ledger_factory = ledger_factory
        self._ledgers: Dict[str, Any] = {}
        self.registry = registry or default_registry(transfer_limit)
        self._clock = clock

    def ledger_for(self, network: str) -> LedgerAdapter:
        """Ledger adapter for a network."""
        if self._ledger is not None:
            return self._ledger
        if network not in self._ledgers:
            self._ledgers[network] = self._ledger_factory(network)
        return self._ledgers[network]

    async def verify(self, config: PaymentConfig, client: str) -> PaymentVerificationResult:
        """
        Verify a single payment option.

        Args:
            config: Payment option to check.
            client: Client identity (public key / address).

        Returns:
            PaymentVerificationResult; valid only with unexpired credits.
        """
        rail = self.registry.get(config.payment_type)
        if rail is None:
            return PaymentVerificationResult(
                valid=False,
                error=f"Unsupported payment type: {config.payment_type.value}",
            )

        try:
            now = self._clock()
            credits = await rail.derive_credits(config, client, self.ledger_for(config.network), now)
        except PaymentError as e:
            logger.warning("Payment config rejected for %s: %s", client, e.message)
            return _invalid(e.code, e.message)
        except Exception as e:
            logger.warning(
                "Ledger verification failed for %s (%s): %s",
                client, config.payment_type.value, e,
            )
            return _invalid(PaymentErrorCode.LEDGER_UNAVAILABLE, "Payment verification failed")

        if not has_valid_credits(credits, now):
            return _invalid(
                PaymentErrorCode.NO_VALID_PAYMENT,
                "No valid payment found or credits expired",
            )

        logger.info(
            "Payment verified for %s via %s (%.0fs remaining)",
            client, config.payment_type.value, credits.time_remaining,
        )
        return PaymentVerificationResult(valid=True, credits=credits)

    async def verify_any(
        self,
        configs: Sequence[PaymentConfig],
        client: str,
    ) -> Tuple[Optional[PaymentConfig], PaymentVerificationResult]:
        """
        Try configs in order and stop at the first valid one.

        Returns:
            (matching config, result), or (None, last failure) if none match.
        """
        result = _invalid(PaymentErrorCode.NO_VALID_PAYMENT, "No payment options configured")
        for config in configs:
            result = await self.verify(config, client)
            if result.valid:
                return config, result
        return None, result

    async def close(self) -> None:
        """Close ledgers created by this verifier."""
        for ledger in self._ledgers.values():
            close = getattr(ledger, "close", None)
            if close is not None:
                await close()
        self._ledgers.clear()


def create_payment_config(
    pay_to: str,
    subscription_price: float,
    subscription_time: float,
    network: str = SOLANA_DEVNET,
    payment_type: PaymentType = PaymentType.VALUE,
    **extra: Any,
) -> PaymentConfig:
    """
    Create a payment configuration.

    Args:
        pay_to: Address receiving payments.
        subscription_price: Price per subscription period.
        subscription_time: Subscription period in seconds.
        network: Network identifier (CAIP-2).
        payment_type: Rail.
        **extra: token_mint, validator_id, minimum_stake_amount.
    """
    return PaymentConfig(
        pay_to=pay_to,
        payment_type=payment_type,
        subscription_price=subscription_price,
        subscription_time=subscription_time,
        network=network,
        **extra,
    )

"""
Payment rails.

A rail turns ledger activity for one payment type into credits. VALUE and
TOKEN rails are metered (payments buy time at a linear rate); the STAKE rail
is a binary gate that grants a fixed window while enough stake is active.

New payment methods are added by registering a PaymentRail implementation
in a RailRegistry; the verifier and access controller never switch on type.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from .credits import calculate_credits, calculate_stake_credits
from .ledger import USDC_DEVNET_MINT, LedgerAdapter
from .models import ClientCredits, PaymentConfig, PaymentType

logger = logging.getLogger(__name__)

DEFAULT_TRANSFER_LIMIT = 20


class PaymentRail(ABC):
    """Converts ledger facts for one payment type into credits."""

    payment_type: PaymentType

    def __init__(self, transfer_limit: int = DEFAULT_TRANSFER_LIMIT):
        self.transfer_limit = transfer_limit

    @abstractmethod
    async def derive_credits(
        self,
        config: PaymentConfig,
        client: str,
        ledger: LedgerAdapter,
        now: float,
    ) -> Optional[ClientCredits]:
        """
        Derive credits for a client.

        Returns:
            ClientCredits, or None if the client has nothing on this rail.
            Ledger errors propagate to the caller.
        """


class ValueRail(PaymentRail):
    """Native value transfers (SOL)."""

    payment_type = PaymentType.VALUE

    async def derive_credits(self, config, client, ledger, now):
        logger.debug("Checking %s transfers for %s", self.payment_type.value, client)
        transfers = await ledger.query_transfers(client, config.pay_to, self.transfer_limit)
        return calculate_credits(
            transfers,
            config.subscription_price,
            config.subscription_time,
            now=now,
        )


class TokenRail(PaymentRail):
    """Fungible token transfers (USDC unless the config names another mint)."""

    payment_type = PaymentType.TOKEN

    def __init__(
        self,
        transfer_limit: int = DEFAULT_TRANSFER_LIMIT,
        default_mint: str = USDC_DEVNET_MINT,
    ):
        super().__init__(transfer_limit)
        self.default_mint = default_mint

    async def derive_credits(self, config, client, ledger, now):
        mint = config.token_mint or self.default_mint
        logger.debug("Checking token %s transfers for %s", mint, client)
        transfers = await ledger.query_token_transfers(
            client, config.pay_to, mint, self.transfer_limit
        )
        return calculate_credits(
            transfers,
            config.subscription_price,
            config.subscription_time,
            now=now,
        )


@dataclass
class StakeVerificationResult:
    """Outcome of a stake check."""
    has_valid_stake: bool
    stake_amount: float = 0.0
    stake_accounts: List[str] = field(default_factory=list)
    credits: Optional[ClientCredits] = None


async def verify_stake(
    ledger: LedgerAdapter,
    client: str,
    validator: str,
    minimum_stake: float,
    now: float,
) -> StakeVerificationResult:
    """
    Check that client has at least minimum_stake actively delegated to validator.

    Args:
        ledger: Ledger adapter.
        client: Delegator address.
        validator: Validator identifier (vote account).
        minimum_stake: Threshold in the rail's unit.
        now: Current time, anchors the fixed grant.

    Returns:
        StakeVerificationResult; credits are set only when the stake qualifies.
    """
    delegation = await ledger.query_stake_delegations(client, validator)
    has_valid_stake = delegation.is_active and delegation.total_delegated >= minimum_stake

    if not has_valid_stake:
        logger.info(
            "Stake for %s below minimum (%s < %s)",
            client, delegation.total_delegated, minimum_stake,
        )
        return StakeVerificationResult(
            has_valid_stake=False,
            stake_amount=delegation.total_delegated,
            stake_accounts=list(delegation.accounts),
        )

    return StakeVerificationResult(
        has_valid_stake=True,
        stake_amount=delegation.total_delegated,
        stake_accounts=list(delegation.accounts),
        credits=calculate_stake_credits(delegation.total_delegated, now=now),
    )


class StakeRail(PaymentRail):
    """Stake delegation to a validator: fixed grant above a threshold."""

    payment_type = PaymentType.STAKE

    async def derive_credits(self, config, client, ledger, now):
        result = await verify_stake(
            ledger,
            client,
            config.validator_id,
            config.minimum_stake_amount,
            now,
        )
        return result.credits


class RailRegistry:
    """Payment type -> rail lookup."""

    def __init__(self) -> None:
        self._rails: Dict[PaymentType, PaymentRail] = {}

    def register(self, rail: PaymentRail) -> None:
        """Register a rail, replacing any rail for the same payment type."""
        self._rails[rail.payment_type] = rail

    def get(self, payment_type: PaymentType) -> Optional[PaymentRail]:
        return self._rails.get(payment_type)

    def payment_types(self) -> List[PaymentType]:
        return list(self._rails)

    def __contains__(self, payment_type: object) -> bool:
        return payment_type in self._rails

    def __iter__(self) -> Iterator[PaymentRail]:
        return iter(self._rails.values())


def default_registry(transfer_limit: int = DEFAULT_TRANSFER_LIMIT) -> RailRegistry:
    """Registry with the VALUE, TOKEN and STAKE rails."""
    registry = RailRegistry()
    registry.register(ValueRail(transfer_limit))
    registry.register(TokenRail(transfer_limit))
    registry.register(StakeRail(transfer_limit))
    return registry

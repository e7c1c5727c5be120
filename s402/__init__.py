"""
s402: signed, ledger-verified payment gates for FastAPI.

Gate API endpoints behind RFC 9421 request signatures and on-chain payments.
Clients pay by transferring SOL or USDC (or by staking to a validator) and
get time-bounded access proportional to what they paid.

Usage:
    from s402 import PaymentType, create_gate, create_payment_config
    from fastapi import Depends

    gate = create_gate(
        payment_options=[create_payment_config("PayToAddress...", 0.001, 60)],
        public_key="ClientSigningKey...",
        require_signature=True,
    )

    @app.get("/api/data")
    async def data(payment=Depends(gate())):
        return {"data": "...", "expires_at": payment["expires_at"]}
"""

from .access import AccessController, AccessDecision, Outcome
from .cache import CreditCache, get_credit_cache, reset_credit_cache
from .credits import (
    calculate_credits,
    calculate_minimum_payment,
    calculate_stake_credits,
    calculate_time_for_payment,
    has_valid_credits,
)
from .errors import (
    AuthenticationError,
    AuthErrorCode,
    ConfigurationError,
    ConfigurationErrorCode,
    LedgerError,
    PaymentError,
    PaymentErrorCode,
    S402Error,
)
from .gate import Gate, create_gate
from .keys import (
    export_private_key,
    export_public_key,
    generate_key_pair,
    import_private_key,
    import_public_key,
)
from .ledger import (
    SOLANA_DEVNET,
    SOLANA_MAINNET,
    SOLANA_TESTNET,
    USDC_DEVNET_MINT,
    USDC_MAINNET_MINT,
    LedgerAdapter,
    SolanaLedger,
)
from .models import (
    ClientCredits,
    HttpRequest,
    KeyPair,
    LedgerTransfer,
    PaymentConfig,
    PaymentOption,
    PaymentType,
    StakeDelegation,
    VerificationResult,
)
from .payment import PaymentVerificationResult, PaymentVerifier, create_payment_config
from .protocol import format_payment_required, parse_payment_required
from .rails import PaymentRail, RailRegistry, StakeRail, TokenRail, ValueRail, verify_stake
from .signatures import sign_request, verify_request
from .stats import GateStats

__version__ = "0.1.0"

__all__ = [
    # Main API
    "create_gate",
    "Gate",
    "create_payment_config",
    "AccessController",
    "AccessDecision",
    "Outcome",
    # Models
    "PaymentType",
    "PaymentConfig",
    "PaymentOption",
    "HttpRequest",
    "KeyPair",
    "ClientCredits",
    "LedgerTransfer",
    "StakeDelegation",
    "VerificationResult",
    # Signatures and keys
    "sign_request",
    "verify_request",
    "generate_key_pair",
    "export_public_key",
    "import_public_key",
    "export_private_key",
    "import_private_key",
    # Credits
    "calculate_credits",
    "calculate_stake_credits",
    "calculate_time_for_payment",
    "calculate_minimum_payment",
    "has_valid_credits",
    "CreditCache",
    "get_credit_cache",
    "reset_credit_cache",
    # Ledger and rails
    "LedgerAdapter",
    "SolanaLedger",
    "PaymentVerifier",
    "PaymentVerificationResult",
    "PaymentRail",
    "ValueRail",
    "TokenRail",
    "StakeRail",
    "RailRegistry",
    "verify_stake",
    "SOLANA_DEVNET",
    "SOLANA_MAINNET",
    "SOLANA_TESTNET",
    "USDC_DEVNET_MINT",
    "USDC_MAINNET_MINT",
    # Protocol
    "format_payment_required",
    "parse_payment_required",
    # Errors
    "S402Error",
    "ConfigurationError",
    "ConfigurationErrorCode",
    "AuthenticationError",
    "AuthErrorCode",
    "PaymentError",
    "PaymentErrorCode",
    "LedgerError",
    # Stats
    "GateStats",
]

"""
Shared data model for s402.

Times are Unix timestamps in seconds (float). Amounts are in the rail's
human-readable unit (SOL, USDC), never raw lamports or token subunits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import AuthenticationError, AuthErrorCode


class PaymentType(str, Enum):
    """Payment rails a server can accept."""
    VALUE = "VALUE"    # native value transfer (SOL)
    TOKEN = "TOKEN"    # fungible token transfer (USDC)
    STAKE = "STAKE"    # stake delegation to a validator


@dataclass(frozen=True)
class KeyPair:
    """Ed25519 key pair (32-byte raw keys)."""
    public_key: bytes
    private_key: bytes


@dataclass
class HttpRequest:
    """HTTP request as seen by the signer and the access controller."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Union[str, bytes]] = None
    client_public_key: Optional[str] = None

    def __post_init__(self) -> None:
        self.headers = {str(k).lower(): str(v) for k, v in (self.headers or {}).items()}


@dataclass(frozen=True)
class SignatureComponents:
    """Signature headers produced by sign_request()."""
    signature_input: str            # sig1=("@method" ...);created=...;keyid="...";alg="ed25519"
    signature: str                  # sig1=:<base64>:
    key_id: str
    algorithm: str
    content_digest: Optional[str] = None


@dataclass
class VerificationResult:
    """Result of request signature verification."""
    valid: bool
    error: Optional[str] = None
    error_code: Optional[AuthErrorCode] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def raise_for_error(self) -> None:
        """Raise AuthenticationError if verification failed."""
        if not self.valid:
            raise AuthenticationError(
                self.error_code or AuthErrorCode.INVALID_SIGNATURE,
                self.error or "Signature verification failed",
            )


@dataclass(frozen=True)
class PaymentConfig:
    """
    Server-side payment requirement for one rail.

    Price is per subscription_time seconds of access. STAKE configs are not
    metered: they need validator_id and minimum_stake_amount instead.
    """
    pay_to: str
    payment_type: PaymentType
    subscription_price: float
    subscription_time: float
    network: str
    token_mint: Optional[str] = None
    validator_id: Optional[str] = None
    minimum_stake_amount: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.pay_to:
            raise ValueError("s402: pay_to address is required")
        if not isinstance(self.payment_type, PaymentType):
            object.__setattr__(self, "payment_type", PaymentType(self.payment_type))
        if not self.subscription_price or self.subscription_price <= 0:
            raise ValueError("s402: subscription_price must be greater than 0")
        if not self.subscription_time or self.subscription_time <= 0:
            raise ValueError("s402: subscription_time must be greater than 0")
        if self.payment_type == PaymentType.STAKE:
            if not self.validator_id:
                raise ValueError("s402: STAKE payment requires validator_id")
            if not self.minimum_stake_amount or self.minimum_stake_amount <= 0:
                raise ValueError("s402: STAKE payment requires a positive minimum_stake_amount")

    def to_option(self) -> "PaymentOption":
        """Client-facing projection of this config."""
        return PaymentOption(
            payment_type=self.payment_type,
            pay_to=self.pay_to,
            subscription_price=self.subscription_price,
            subscription_time=self.subscription_time,
            network=self.network,
            token_mint=self.token_mint,
            validator_id=self.validator_id,
            minimum_stake_amount=self.minimum_stake_amount,
        )


@dataclass(frozen=True)
class PaymentOption:
    """Payment option as sent to clients in a 402 response."""
    payment_type: PaymentType
    pay_to: str
    subscription_price: float
    subscription_time: float
    network: str
    token_mint: Optional[str] = None
    validator_id: Optional[str] = None
    minimum_stake_amount: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "paymentType": self.payment_type.value,
            "payTo": self.pay_to,
            "subscriptionPrice": self.subscription_price,
            "subscriptionTime": self.subscription_time,
            "network": self.network,
        }
        if self.token_mint is not None:
            data["tokenMint"] = self.token_mint
        if self.validator_id is not None:
            data["validatorId"] = self.validator_id
        if self.minimum_stake_amount is not None:
            data["minimumStakeAmount"] = self.minimum_stake_amount
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaymentOption":
        return cls(
            payment_type=PaymentType(data["paymentType"]),
            pay_to=data["payTo"],
            subscription_price=float(data["subscriptionPrice"]),
            subscription_time=float(data["subscriptionTime"]),
            network=data["network"],
            token_mint=data.get("tokenMint"),
            validator_id=data.get("validatorId"),
            minimum_stake_amount=data.get("minimumStakeAmount"),
        )


@dataclass(frozen=True)
class LedgerTransfer:
    """One confirmed transfer from sender to recipient."""
    id: str                 # transaction signature
    amount: float
    timestamp: float
    sender: str
    recipient: str


@dataclass(frozen=True)
class StakeDelegation:
    """Active stake a delegator has with one validator."""
    total_delegated: float
    is_active: bool
    accounts: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TransactionRef:
    """Latest transaction backing a credit grant."""
    signature: str
    amount: float
    timestamp: float


@dataclass(frozen=True)
class ClientCredits:
    """Time-bounded access grant derived from ledger activity."""
    time_remaining: float
    expires_at: float
    last_transaction: Optional[TransactionRef] = None


@dataclass(frozen=True)
class CachedCredit(ClientCredits):
    """ClientCredits plus the time the ledger was last consulted."""
    last_checked: float = 0.0

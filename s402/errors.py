"""
Error taxonomy for s402.

Configuration faults abort a request with a generic server error.
Authentication failures are reported to the caller with a distinguishing
status. Payment failures (including ledger outages) all surface as
402 Payment Required so a client cannot tell "not paid" from "could not check".
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ConfigurationErrorCode(str, Enum):
    NO_PAYMENT_OPTIONS = "NoPaymentOptions"
    MISSING_VERIFICATION_KEY = "MissingVerificationKey"


class AuthErrorCode(str, Enum):
    MISSING_SIGNATURE = "MissingSignature"
    UNDER_SPECIFIED_SIGNATURE = "UnderSpecifiedSignature"
    UNSUPPORTED_ALGORITHM = "UnsupportedAlgorithm"
    INVALID_SIGNATURE = "InvalidSignature"


class PaymentErrorCode(str, Enum):
    NO_VALID_PAYMENT = "NoValidPayment"
    LEDGER_UNAVAILABLE = "LedgerUnavailable"
    INVALID_RATE_CONFIG = "InvalidRateConfig"


class S402Error(Exception):
    """Base exception for s402."""

    status_code: int = 500

    def __init__(
        self,
        code: Enum,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(S402Error):
    """Server misconfiguration. Fatal for the request, never a client error."""

    status_code = 500

    def __init__(self, code: ConfigurationErrorCode, message: str):
        super().__init__(code, message)


class AuthenticationError(S402Error):
    """
    Request signature problems.

    The gate reports signature failures through VerificationResult codes and
    never raises this. It is for library callers that verify requests
    themselves and prefer an exception (see VerificationResult.raise_for_error).
    """

    def __init__(self, code: AuthErrorCode, message: str):
        super().__init__(code, message)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if self.code == AuthErrorCode.MISSING_SIGNATURE:
            return 401
        return 403


class PaymentError(S402Error):
    """No usable credits could be derived for a payment option."""

    status_code = 402

    def __init__(self, code: PaymentErrorCode, message: str):
        super().__init__(code, message)


class LedgerError(S402Error):
    """Raised by ledger adapters on transport, RPC or data errors."""

    status_code = 402

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(PaymentErrorCode.LEDGER_UNAVAILABLE, message, details)

"""
Access control state machine.

    Start -> SignatureCheck (if required) -> CreditLookup -> Allow | PaymentRequired

Configuration faults raise ConfigurationError before any verification work.
Every other outcome is returned as an AccessDecision; the HTTP binding maps
it onto a response.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .cache import CreditCache, cache_key, get_credit_cache
from .credits import has_valid_credits
from .errors import (
    AuthErrorCode,
    ConfigurationError,
    ConfigurationErrorCode,
    PaymentErrorCode,
)
from .models import ClientCredits, HttpRequest, PaymentConfig, PaymentType
from .payment import PaymentVerifier
from .protocol import extract_client_identity, format_payment_required
from .signatures import REQUIRED_COMPONENTS, verify_request

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    ALLOW = "allow"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    BAD_REQUEST = "bad_request"
    PAYMENT_REQUIRED = "payment_required"


_STATUS = {
    Outcome.ALLOW: 200,
    Outcome.UNAUTHORIZED: 401,
    Outcome.FORBIDDEN: 403,
    Outcome.BAD_REQUEST: 400,
    Outcome.PAYMENT_REQUIRED: 402,
}


@dataclass
class AccessDecision:
    """Gate decision for one request."""
    outcome: Outcome
    body: Optional[Dict[str, Any]] = None
    client_id: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    credits: Optional[ClientCredits] = None
    from_cache: bool = False
    error_code: Optional[Any] = None
    ledger_lookups: int = 0

    @property
    def allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW

    @property
    def status_code(self) -> int:
        return _STATUS[self.outcome]


class AccessController:
    """
    Decides whether a request may reach the protected handler.

    Args:
        payment_options: Accepted payment configs, evaluated in this order.
        public_key: Raw 32-byte key used to verify request signatures.
        require_signature: Require a valid request signature.
        cache: Credit cache (defaults to the process-wide cache).
        verifier: Payment verifier (defaults to one on Solana JSON-RPC).
        required_components: Components every signature must cover.
        max_signature_age: Reject signatures older than this many seconds.
        clock: Time source.
    """

    def __init__(
        self,
        payment_options: Sequence[PaymentConfig],
        public_key: Optional[bytes] = None,
        require_signature: bool = False,
        cache: Optional[CreditCache] = None,
        verifier: Optional[PaymentVerifier] = None,
        required_components: Sequence[str] = REQUIRED_COMPONENTS,
        max_signature_age: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.payment_options: List[PaymentConfig] = list(payment_options or [])
        self.public_key = public_key
        self.require_signature = require_signature
        self.cache = cache if cache is not None else get_credit_cache()
        self.verifier = verifier or PaymentVerifier(clock=clock)
        self.required_components = tuple(required_components)
        self.max_signature_age = max_signature_age
        self._clock = clock

    def check_configuration(self) -> None:
        """
        Raises:
            ConfigurationError: If the gate cannot make a decision at all.
        """
        if not self.payment_options:
            logger.error("No payment options configured")
            raise ConfigurationError(
                ConfigurationErrorCode.NO_PAYMENT_OPTIONS,
                "No payment options configured",
            )
        if self.require_signature and not self.public_key:
            logger.error("Signature verification enabled but no public key provided")
            raise ConfigurationError(
                ConfigurationErrorCode.MISSING_VERIFICATION_KEY,
                "Signature verification enabled but no public key provided",
            )

    def _check_signature(self, request: HttpRequest) -> Optional[AccessDecision]:
        result = verify_request(
            request,
            self.public_key,
            required_components=self.required_components,
            max_age=self.max_signature_age,
            now=self._clock(),
        )
        if result.valid:
            logger.debug("Signature verified (keyid=%s)", result.metadata.get("keyid"))
            return None

        if result.error_code == AuthErrorCode.MISSING_SIGNATURE:
            logger.info("Request rejected: missing signature headers")
            return AccessDecision(
                outcome=Outcome.UNAUTHORIZED,
                body={
                    "error": "Unauthorized: Request must be signed",
                    "message": result.error,
                },
                error_code=result.error_code,
            )

        logger.warning("Request rejected: %s", result.error)
        return AccessDecision(
            outcome=Outcome.FORBIDDEN,
            body={
                "error": "Forbidden: Invalid signature",
                "message": result.error,
                "code": result.error_code.value if result.error_code else None,
            },
            error_code=result.error_code,
        )

    async def check(self, request: HttpRequest) -> AccessDecision:
        """
        Run a request through the gate.

        Args:
            request: Incoming request.

        Returns:
            AccessDecision.

        Raises:
            ConfigurationError: On server misconfiguration.
        """
        self.check_configuration()

        if self.require_signature:
            denied = self._check_signature(request)
            if denied is not None:
                return denied

        client_id, identity_error = extract_client_identity(request)
        if client_id is None:
            logger.info("Request rejected: %s", identity_error)
            return AccessDecision(
                outcome=Outcome.BAD_REQUEST,
                body={"error": "Bad Request", "message": identity_error},
            )

        lookups = 0
        last_error: Optional[PaymentErrorCode] = None
        for config in self.payment_options:
            key = cache_key(config.payment_type, client_id)

            cached = self.cache.get(key)
            if cached is not None and has_valid_credits(cached, self._clock()):
                logger.debug("Using cached credits for %s (%s)", client_id, config.payment_type.value)
                return AccessDecision(
                    outcome=Outcome.ALLOW,
                    client_id=client_id,
                    payment_type=config.payment_type,
                    credits=cached,
                    from_cache=True,
                    ledger_lookups=lookups,
                )

            lookups += 1
            result = await self.verifier.verify(config, client_id)
            if result.valid and result.credits is not None:
                entry = self.cache.set(key, result.credits)
                return AccessDecision(
                    outcome=Outcome.ALLOW,
                    client_id=client_id,
                    payment_type=config.payment_type,
                    credits=entry,
                    ledger_lookups=lookups,
                )
            last_error = result.error_code

        logger.info("Payment required for %s: no valid payment method found", client_id)
        return AccessDecision(
            outcome=Outcome.PAYMENT_REQUIRED,
            body=format_payment_required(self.payment_options),
            client_id=client_id,
            error_code=last_error or PaymentErrorCode.NO_VALID_PAYMENT,
            ledger_lookups=lookups,
        )

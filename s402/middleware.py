"""
FastAPI dependency for s402 gates.

Turns a Starlette request into an HttpRequest, runs the access controller
and maps its decision onto the response: the payment info dict on Allow,
an HTTPException (401/403/400/402) otherwise, and a bare 500 for server
configuration faults.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import HTTPException, Request

from .access import AccessController, AccessDecision
from .errors import ConfigurationError
from .models import HttpRequest
from .stats import GateStats

logger = logging.getLogger(__name__)


async def to_http_request(request: Request) -> HttpRequest:
    """Build an HttpRequest from a FastAPI/Starlette request."""
    body = await request.body()
    return HttpRequest(
        method=request.method,
        url=str(request.url),
        headers=dict(request.headers),
        body=body or None,
    )


def payment_info(decision: AccessDecision) -> Dict[str, Any]:
    """Dependency result for an allowed request."""
    credits = decision.credits
    return {
        "paid": True,
        "client_id": decision.client_id,
        "payment_type": decision.payment_type.value if decision.payment_type else None,
        "time_remaining": credits.time_remaining if credits else None,
        "expires_at": credits.expires_at if credits else None,
        "from_cache": decision.from_cache,
    }


class GateDependency:
    """
    Gate logic for one route configuration.

    Created by Gate.__call__ and used with Depends().
    """

    def __init__(
        self,
        controller: AccessController,
        stats: GateStats,
        on_grant: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ):
        self.controller = controller
        self.stats = stats
        self.on_grant = on_grant

    async def __call__(self, request: Request) -> Dict[str, Any]:
        """
        Process a request through the gate.

        Returns:
            Payment info dict (the dependency result).

        Raises:
            HTTPException: 401/403 for signature failures, 400 without a
                client identity, 402 when payment is required, 500 on
                misconfiguration.
        """
        endpoint = request.url.path
        logger.debug("Processing request to %s %s", request.method, endpoint)

        try:
            decision = await self.controller.check(await to_http_request(request))
        except ConfigurationError:
            self.stats.record(endpoint, "configuration_error")
            raise HTTPException(
                status_code=500,
                detail={"error": "Server configuration error"},
            )

        self.stats.record(
            endpoint,
            decision.outcome.value,
            client_id=decision.client_id,
            payment_type=decision.payment_type.value if decision.payment_type else None,
            from_cache=decision.from_cache,
            ledger_lookups=decision.ledger_lookups,
        )

        if not decision.allowed:
            raise HTTPException(status_code=decision.status_code, detail=decision.body)

        info = payment_info(decision)
        info["endpoint"] = endpoint
        if self.on_grant and not decision.from_cache:
            try:
                self.on_grant(dict(info))
            except Exception:
                logger.exception("on_grant callback failed")
        return info

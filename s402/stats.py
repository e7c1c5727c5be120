"""
In-memory gate statistics.

Tracks request outcomes, cache effectiveness, unique clients and recent
grants per endpoint.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set


@dataclass
class GrantRecord:
    """A single allowed request."""
    endpoint: str
    client_id: str
    payment_type: Optional[str]
    from_cache: bool
    timestamp: float  # seconds since epoch


class GateStats:
    """In-memory access statistics tracker."""

    def __init__(self, max_recent: int = 100):
        self.max_recent = max_recent

        # Totals
        self.total_requests: int = 0
        self.allowed: int = 0
        self.cache_hits: int = 0
        self.ledger_lookups: int = 0

        # Outcome name -> count
        self._outcomes: Dict[str, int] = {}

        # Per-endpoint: path -> { requests, allowed, denied }
        self._endpoints: Dict[str, Dict[str, int]] = {}

        # Unique clients granted access
        self._clients: Set[str] = set()

        # Recent grants (ring buffer)
        self._recent: List[GrantRecord] = []

    def record(
        self,
        endpoint: str,
        outcome: str,
        client_id: Optional[str] = None,
        payment_type: Optional[str] = None,
        from_cache: bool = False,
        ledger_lookups: int = 0,
    ) -> None:
        """
        Record one gate decision.

        Args:
            endpoint: Request path.
            outcome: Outcome name ("allow", "payment_required", ...).
            client_id: Client identity, if known.
            payment_type: Rail that granted access.
            from_cache: Whether the grant came from the credit cache.
            ledger_lookups: Ledger verifications performed for this request.
        """
        self.total_requests += 1
        self.ledger_lookups += ledger_lookups
        self._outcomes[outcome] = self._outcomes.get(outcome, 0) + 1

        if endpoint not in self._endpoints:
            self._endpoints[endpoint] = {"requests": 0, "allowed": 0, "denied": 0}
        ep = self._endpoints[endpoint]
        ep["requests"] += 1

        if outcome != "allow":
            ep["denied"] += 1
            return

        self.allowed += 1
        ep["allowed"] += 1
        if from_cache:
            self.cache_hits += 1
        if client_id:
            self._clients.add(client_id)

        self._recent.append(
            GrantRecord(
                endpoint=endpoint,
                client_id=client_id or "unknown",
                payment_type=payment_type,
                from_cache=from_cache,
                timestamp=time.time(),
            )
        )
        if len(self._recent) > self.max_recent:
            self._recent = self._recent[-self.max_recent:]

    def to_dict(self) -> Dict[str, Any]:
        """Stats summary as a plain dict."""
        recent = [
            {
                "endpoint": r.endpoint,
                "clientId": r.client_id,
                "paymentType": r.payment_type,
                "fromCache": r.from_cache,
                "timestamp": r.timestamp,
            }
            for r in self._recent[-20:]
        ]
        recent.reverse()

        return {
            "totalRequests": self.total_requests,
            "allowed": self.allowed,
            "denied": self.total_requests - self.allowed,
            "outcomes": dict(self._outcomes),
            "cacheHits": self.cache_hits,
            "ledgerLookups": self.ledger_lookups,
            "uniqueClients": len(self._clients),
            "endpoints": {path: dict(data) for path, data in self._endpoints.items()},
            "recentGrants": recent,
        }

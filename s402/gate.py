"""
Main gate factory.

create_gate() builds a gate that can be used as a FastAPI dependency or
decorator to put API endpoints behind request signatures and ledger-verified
payments.
"""

from __future__ import annotations

import functools
import inspect
import time
from typing import Any, Callable, Dict, Optional, Sequence, Union

from .access import AccessController
from .cache import CreditCache, get_credit_cache
from .keys import import_public_key
from .middleware import GateDependency
from .models import PaymentConfig
from .payment import PaymentVerifier
from .rails import DEFAULT_TRANSFER_LIMIT
from .signatures import REQUIRED_COMPONENTS
from .stats import GateStats


class Gate:
    """
    Gate instance.

    Created by create_gate(). Used as a FastAPI dependency factory or decorator.

    Usage as dependency:
        gate = create_gate(payment_options=[config], public_key="...", require_signature=True)
        @app.get("/api/data")
        async def data(payment=Depends(gate())):
            return {"data": "..."}

    Usage as decorator:
        @app.get("/api/data")
        @gate.require()
        async def data(request: Request):
            return {"data": "..."}
    """

    def __init__(self, config: Dict[str, Any]):
        self._config = config
        self.stats: GateStats = config["stats"]
        self.cache: CreditCache = config["cache"]
        self.verifier: PaymentVerifier = config["verifier"]

    def controller(self, **route_opts: Any) -> AccessController:
        """
        Access controller for a route, applying per-route overrides.

        Cache keys carry no price or recipient, so a route with its own
        payment options gets its own cache.
        """
        options = route_opts.get("payment_options")
        require_signature = route_opts.get("require_signature")
        cache = self.cache
        if options is not None:
            cache = CreditCache(self.cache.cache_timeout, clock=self._config["clock"])
        return AccessController(
            payment_options=options if options is not None else self._config["payment_options"],
            public_key=self._config["public_key"],
            require_signature=(
                require_signature
                if require_signature is not None
                else self._config["require_signature"]
            ),
            cache=cache,
            verifier=self.verifier,
            required_components=self._config["required_components"],
            max_signature_age=self._config["max_signature_age"],
            clock=self._config["clock"],
        )

    def __call__(self, **route_opts: Any) -> GateDependency:
        """
        Create a FastAPI dependency for a route.

        Args:
            payment_options: Override the gate's payment options.
            require_signature: Override the gate's signature requirement.

        Returns:
            GateDependency instance usable with Depends().
        """
        return GateDependency(
            self.controller(**route_opts),
            self.stats,
            on_grant=self._config.get("on_grant"),
        )

    def require(self, **route_opts: Any) -> Callable:
        """
        Decorator that requires payment before executing the handler.

        The handler must accept a 'request: Request' parameter. If it also
        accepts 'payment', the payment info is passed in.
        """

        def decorator(func: Callable) -> Callable:
            dependency = self(**route_opts)

            @functools.wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> Any:
                from fastapi import Request

                request = kwargs.get("request")
                if request is None:
                    for arg in args:
                        if isinstance(arg, Request):
                            request = arg
                            break

                if request is None:
                    raise RuntimeError(
                        "gate.require() decorator needs a 'request: Request' parameter "
                        "in the route handler"
                    )

                payment = await dependency(request)

                if "payment" in inspect.signature(func).parameters:
                    kwargs["payment"] = payment

                return await func(*args, **kwargs)

            return wrapper

        return decorator

    def dashboard(self) -> Callable:
        """
        Create a FastAPI route handler for the stats dashboard.

        Usage:
            app.add_api_route("/api/stats", gate.dashboard())
        """

        async def dashboard_handler() -> Dict[str, Any]:
            return self.dashboard_data()

        return dashboard_handler

    def dashboard_data(self) -> Dict[str, Any]:
        """Current stats plus cache size."""
        data = self.stats.to_dict()
        data["cache"] = self.cache.stats()
        return data

    async def close(self) -> None:
        """Close ledger connections opened by the gate."""
        await self.verifier.close()


def create_gate(
    payment_options: Sequence[PaymentConfig],
    public_key: Union[str, bytes, None] = None,
    require_signature: bool = False,
    ledger: Optional[Any] = None,
    cache: Optional[CreditCache] = None,
    cache_timeout: Optional[float] = None,
    transfer_limit: int = DEFAULT_TRANSFER_LIMIT,
    required_components: Sequence[str] = REQUIRED_COMPONENTS,
    max_signature_age: Optional[int] = None,
    on_grant: Optional[Callable] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Gate:
    """
    Create a gate for protecting API endpoints with s402.

    Args:
        payment_options: Accepted payment configs, tried in order.
        public_key: Signature verification key (base58 string or raw bytes).
        require_signature: Require RFC 9421 request signatures.
        ledger: Ledger adapter (defaults to Solana JSON-RPC per network).
        cache: Credit cache instance (defaults to the process-wide cache).
        cache_timeout: Build a private cache with this timeout instead.
        transfer_limit: Number of recent transfers considered per check.
        required_components: Components every signature must cover.
        max_signature_age: Reject signatures older than this (seconds).
        on_grant: Callback receiving payment info when the ledger grants access.
        clock: Time source (defaults to time.time).

    Returns:
        Gate instance.
    """
    if isinstance(public_key, str):
        public_key = import_public_key(public_key)

    if ledger is not None and not hasattr(ledger, "query_transfers"):
        raise ValueError("s402: ledger must have a query_transfers() method")

    if cache is None:
        cache = CreditCache(cache_timeout) if cache_timeout is not None else get_credit_cache()

    clock = clock or time.time
    verifier = PaymentVerifier(ledger=ledger, transfer_limit=transfer_limit, clock=clock)

    config = {
        "payment_options": list(payment_options or []),
        "public_key": public_key,
        "require_signature": require_signature,
        "cache": cache,
        "verifier": verifier,
        "stats": GateStats(),
        "required_components": tuple(required_components),
        "max_signature_age": max_signature_age,
        "on_grant": on_grant,
        "clock": clock,
    }

    return Gate(config)

"""Tests for the gate and its FastAPI dependency."""

import time
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from s402 import create_gate, create_payment_config
from s402.cache import CreditCache
from s402.keys import export_public_key, generate_key_pair
from s402.models import HttpRequest, LedgerTransfer, PaymentType, StakeDelegation
from s402.signatures import add_signature_headers, sign_request


SERVER = "ServerAddress"
CLIENT = "ClientAddress"
VALUE_OPTION = create_payment_config(SERVER, 0.001, 60)
TOKEN_OPTION = create_payment_config(SERVER, 0.1, 60, payment_type=PaymentType.TOKEN)


def make_fake_ledger(transfers=None, token_transfers=None):
    """Create a mock ledger adapter for testing."""
    ledger = AsyncMock()
    ledger.query_transfers = AsyncMock(return_value=transfers or [])
    ledger.query_token_transfers = AsyncMock(return_value=token_transfers or [])
    ledger.query_stake_delegations = AsyncMock(
        return_value=StakeDelegation(total_delegated=0.0, is_active=False)
    )
    return ledger


def paid(amount=0.002, seconds_ago=10):
    return [LedgerTransfer("tx", amount, time.time() - seconds_ago, CLIENT, SERVER)]


def make_fake_request(
    path: str = "/api/test",
    method: str = "GET",
    client: Optional[str] = CLIENT,
    body: bytes = b"",
):
    """Create a mock FastAPI Request object."""
    request = MagicMock()
    request.url.path = path
    request.url.__str__.return_value = f"http://testserver{path}"
    request.method = method
    request.headers = {}
    if client:
        request.headers["x-client-pubkey"] = client
    request.body = AsyncMock(return_value=body)
    return request


class TestCreateGate:
    def test_creates_with_ledger(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache=CreditCache())
        assert gate is not None
        assert gate.stats.total_requests == 0

    def test_requires_query_transfers(self):
        with pytest.raises(ValueError, match="query_transfers"):
            create_gate([VALUE_OPTION], ledger=object())

    def test_imports_base58_public_key(self):
        keys = generate_key_pair()
        gate = create_gate(
            [VALUE_OPTION],
            public_key=export_public_key(keys.public_key),
            require_signature=True,
            ledger=make_fake_ledger(),
        )
        assert gate.controller().public_key == keys.public_key

    def test_rejects_bad_public_key(self):
        with pytest.raises(ValueError):
            create_gate([VALUE_OPTION], public_key="not-a-key")

    def test_cache_timeout_builds_private_cache(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache_timeout=30)
        assert gate.cache.cache_timeout == 30

    def test_route_overrides(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache=CreditCache())
        controller = gate.controller(payment_options=[TOKEN_OPTION])
        assert controller.payment_options == [TOKEN_OPTION]
        assert controller.cache is not gate.cache
        assert controller.cache.cache_timeout == gate.cache.cache_timeout
        assert gate.controller().cache is gate.cache
        assert gate.controller(require_signature=False).cache is gate.cache
        assert controller.verifier is gate.verifier


class TestGateDependency:
    """Test the gate dependency behavior."""

    @pytest.mark.asyncio
    async def test_returns_402_without_payment(self):
        gate = create_gate([VALUE_OPTION, TOKEN_OPTION], ledger=make_fake_ledger(), cache=CreditCache())
        dependency = gate()

        with pytest.raises(HTTPException) as exc_info:
            await dependency(make_fake_request())

        assert exc_info.value.status_code == 402
        body = exc_info.value.detail
        assert body["error"] == "Payment Required"
        assert len(body["paymentOptions"]) == 2

    @pytest.mark.asyncio
    async def test_allows_paid_client(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(transfers=paid()), cache=CreditCache())
        dependency = gate()

        result = await dependency(make_fake_request())
        assert result["paid"] is True
        assert result["client_id"] == CLIENT
        assert result["payment_type"] == "VALUE"
        assert result["time_remaining"] == pytest.approx(110, abs=2)
        assert result["from_cache"] is False
        assert result["endpoint"] == "/api/test"

    @pytest.mark.asyncio
    async def test_second_request_from_cache(self):
        ledger = make_fake_ledger(transfers=paid())
        gate = create_gate([VALUE_OPTION], ledger=ledger, cache=CreditCache())
        dependency = gate()

        await dependency(make_fake_request())
        result = await dependency(make_fake_request())
        assert result["from_cache"] is True
        assert ledger.query_transfers.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_identity_is_400(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache=CreditCache())

        with pytest.raises(HTTPException) as exc_info:
            await gate()(make_fake_request(client=None))
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_misconfiguration_is_generic_500(self):
        gate = create_gate([], ledger=make_fake_ledger(), cache=CreditCache())

        with pytest.raises(HTTPException) as exc_info:
            await gate()(make_fake_request())
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail == {"error": "Server configuration error"}

    @pytest.mark.asyncio
    async def test_on_grant_called_for_ledger_grants_only(self):
        on_grant = MagicMock()
        gate = create_gate(
            [VALUE_OPTION],
            ledger=make_fake_ledger(transfers=paid()),
            cache=CreditCache(),
            on_grant=on_grant,
        )
        dependency = gate()

        await dependency(make_fake_request())
        await dependency(make_fake_request())
        on_grant.assert_called_once()
        assert on_grant.call_args.args[0]["client_id"] == CLIENT

    @pytest.mark.asyncio
    async def test_on_grant_failure_does_not_block(self):
        gate = create_gate(
            [VALUE_OPTION],
            ledger=make_fake_ledger(transfers=paid()),
            cache=CreditCache(),
            on_grant=MagicMock(side_effect=RuntimeError("hook failed")),
        )
        result = await gate()(make_fake_request())
        assert result["paid"] is True


    @pytest.mark.asyncio
    async def test_cheap_route_grant_does_not_open_premium_route(self):
        cheap = create_payment_config("CheapAddress", 0.001, 60)
        premium = create_payment_config("PremiumAddress", 10.0, 60)
        transfers = [LedgerTransfer("tx", 0.001, time.time() - 1, CLIENT, "CheapAddress")]
        ledger = make_fake_ledger()
        ledger.query_transfers.side_effect = (
            lambda client, pay_to, limit: transfers if pay_to == "CheapAddress" else []
        )
        gate = create_gate([cheap], ledger=ledger, cache=CreditCache())
        cheap_route = gate()
        premium_route = gate(payment_options=[premium])

        result = await cheap_route(make_fake_request("/cheap"))
        assert result["paid"] is True

        with pytest.raises(HTTPException) as exc_info:
            await premium_route(make_fake_request("/premium"))
        assert exc_info.value.status_code == 402
        assert exc_info.value.detail["paymentOptions"][0]["payTo"] == "PremiumAddress"
        assert ledger.query_transfers.await_count == 2


class TestRequireDecorator:
    @pytest.mark.asyncio
    async def test_passes_payment_to_handler(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(transfers=paid()), cache=CreditCache())

        @gate.require()
        async def handler(request, payment=None):
            return payment

        result = await handler(request=make_fake_request())
        assert result["paid"] is True

    @pytest.mark.asyncio
    async def test_blocks_unpaid(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache=CreditCache())

        @gate.require()
        async def handler(request):
            return "secret"

        with pytest.raises(HTTPException) as exc_info:
            await handler(request=make_fake_request())
        assert exc_info.value.status_code == 402

    @pytest.mark.asyncio
    async def test_requires_request_parameter(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache=CreditCache())

        @gate.require()
        async def handler():
            return "secret"

        with pytest.raises(RuntimeError, match="request"):
            await handler()


class TestStats:
    @pytest.mark.asyncio
    async def test_dashboard_data(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(transfers=paid()), cache=CreditCache())
        dependency = gate()

        await dependency(make_fake_request())
        await dependency(make_fake_request())
        with pytest.raises(HTTPException):
            await dependency(make_fake_request(client=None))

        data = gate.dashboard_data()
        assert data["totalRequests"] == 3
        assert data["allowed"] == 2
        assert data["denied"] == 1
        assert data["cacheHits"] == 1
        assert data["ledgerLookups"] == 1
        assert data["uniqueClients"] == 1
        assert data["outcomes"] == {"allow": 2, "bad_request": 1}
        assert data["endpoints"]["/api/test"] == {"requests": 3, "allowed": 2, "denied": 1}
        assert data["recentGrants"][0]["fromCache"] is True
        assert data["cache"]["size"] == 1

    @pytest.mark.asyncio
    async def test_dashboard_handler(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache=CreditCache())
        data = await gate.dashboard()()
        assert data["totalRequests"] == 0


class TestFastAPIIntegration:
    def make_app(self, gate):
        app = FastAPI()

        @app.get("/api/data")
        async def data(payment=Depends(gate())):
            return {"data": "secret", "payment": payment}

        @app.post("/api/echo")
        async def echo(request: Request, payment=Depends(gate())):
            return {"echo": await request.json(), "client": payment["client_id"]}

        return app

    def test_unpaid_gets_402(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(), cache=CreditCache())
        client = TestClient(self.make_app(gate))

        response = client.get("/api/data", headers={"x-client-pubkey": CLIENT})
        assert response.status_code == 402
        assert response.json()["detail"]["paymentOptions"][0]["payTo"] == SERVER

    def test_paid_gets_200(self):
        gate = create_gate([VALUE_OPTION], ledger=make_fake_ledger(transfers=paid()), cache=CreditCache())
        client = TestClient(self.make_app(gate))

        response = client.get("/api/data", headers={"x-client-pubkey": CLIENT})
        assert response.status_code == 200
        assert response.json()["data"] == "secret"

    def test_signed_post(self):
        keys = generate_key_pair()
        client_id = export_public_key(keys.public_key)
        ledger = make_fake_ledger(
            transfers=[LedgerTransfer("tx", 0.002, time.time(), client_id, SERVER)]
        )
        gate = create_gate(
            [VALUE_OPTION],
            public_key=keys.public_key,
            require_signature=True,
            ledger=ledger,
            cache=CreditCache(),
        )
        client = TestClient(self.make_app(gate))

        body = '{"clientPublicKey": "%s", "msg": "hi"}' % client_id
        request = HttpRequest(
            "POST",
            "http://testserver/api/echo",
            headers={"content-type": "application/json"},
            body=body,
        )
        headers = add_signature_headers(request.headers, sign_request(request, keys.private_key))

        response = client.post("/api/echo", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json() == {"echo": {"clientPublicKey": client_id, "msg": "hi"}, "client": client_id}

    def test_unsigned_request_gets_401(self):
        keys = generate_key_pair()
        gate = create_gate(
            [VALUE_OPTION],
            public_key=keys.public_key,
            require_signature=True,
            ledger=make_fake_ledger(),
            cache=CreditCache(),
        )
        client = TestClient(self.make_app(gate))

        response = client.get("/api/data", headers={"x-client-pubkey": CLIENT})
        assert response.status_code == 401

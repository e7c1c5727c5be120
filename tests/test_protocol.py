"""Tests for s402 wire format helpers."""

from s402.ledger import SOLANA_DEVNET, USDC_DEVNET_MINT
from s402.models import HttpRequest, PaymentType
from s402.payment import create_payment_config
from s402.protocol import (
    amount_to_decimal_string,
    extract_client_identity,
    format_payment_required,
    parse_payment_required,
    payment_option_to_x402_accept,
)


SERVER = "ServerAddress"
URL = "https://api.example.com/api/data"


class TestPaymentRequired:
    def test_format(self):
        body = format_payment_required([create_payment_config(SERVER, 0.001, 60)])
        assert body["error"] == "Payment Required"
        assert body["message"]
        assert body["paymentOptions"] == [
            {
                "paymentType": "VALUE",
                "payTo": SERVER,
                "subscriptionPrice": 0.001,
                "subscriptionTime": 60,
                "network": SOLANA_DEVNET,
            }
        ]

    def test_custom_message(self):
        body = format_payment_required([create_payment_config(SERVER, 1, 60)], message="Top up")
        assert body["message"] == "Top up"

    def test_parse_roundtrip(self):
        configs = [
            create_payment_config(SERVER, 0.001, 60),
            create_payment_config(
                SERVER, 0.1, 3600,
                payment_type=PaymentType.TOKEN,
                token_mint=USDC_DEVNET_MINT,
            ),
        ]
        options = parse_payment_required(format_payment_required(configs))
        assert options == [c.to_option() for c in configs]

    def test_parse_skips_malformed(self):
        body = {"paymentOptions": [{"paymentType": "BARTER"}, {"payTo": "x"}]}
        assert parse_payment_required(body) == []

    def test_parse_non_dict(self):
        assert parse_payment_required("Payment Required") == []


class TestClientIdentity:
    def test_header(self):
        request = HttpRequest("GET", URL, headers={"X-Client-Pubkey": " abc "})
        assert extract_client_identity(request) == ("abc", None)

    def test_json_body(self):
        request = HttpRequest("POST", URL, body=b'{"clientPublicKey": "abc", "q": 1}')
        assert extract_client_identity(request) == ("abc", None)

    def test_explicit_field(self):
        request = HttpRequest("POST", URL, client_public_key="abc")
        assert extract_client_identity(request) == ("abc", None)

    def test_header_and_body_agree(self):
        request = HttpRequest(
            "POST", URL,
            headers={"x-client-pubkey": "abc"},
            body='{"clientPublicKey": "abc"}',
        )
        assert extract_client_identity(request) == ("abc", None)

    def test_conflict(self):
        request = HttpRequest(
            "POST", URL,
            headers={"x-client-pubkey": "abc"},
            body='{"clientPublicKey": "xyz"}',
        )
        identity, error = extract_client_identity(request)
        assert identity is None
        assert "Conflicting" in error

    def test_missing(self):
        identity, error = extract_client_identity(HttpRequest("POST", URL, body="not json"))
        assert identity is None
        assert "clientPublicKey" in error


class TestX402:
    def test_decimal_string(self):
        assert amount_to_decimal_string(0.000001) == "0.000001"
        assert amount_to_decimal_string(1.5) == "1.5"
        assert amount_to_decimal_string(2) == "2"
        assert amount_to_decimal_string(0) == "0"

    def test_accept_entry(self):
        option = create_payment_config(
            SERVER, 0.25, 60,
            payment_type=PaymentType.TOKEN,
            token_mint=USDC_DEVNET_MINT,
        ).to_option()
        assert payment_option_to_x402_accept(option) == {
            "paymentRequirements": {
                "scheme": "exact",
                "network": SOLANA_DEVNET,
                "amount": "0.25",
                "destination": SERVER,
                "asset": USDC_DEVNET_MINT,
            }
        }

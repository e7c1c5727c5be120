"""Tests for payment-to-credit conversion."""

import pytest

from s402.credits import (
    STAKE_TRANSACTION_ID,
    STAKE_VALIDITY_SECONDS,
    calculate_credits,
    calculate_minimum_payment,
    calculate_stake_credits,
    calculate_time_for_payment,
    has_valid_credits,
)
from s402.errors import PaymentError, PaymentErrorCode
from s402.models import ClientCredits, LedgerTransfer


T0 = 1_700_000_000.0


def transfer(amount, timestamp, tx_id="tx"):
    return LedgerTransfer(
        id=tx_id,
        amount=amount,
        timestamp=timestamp,
        sender="client",
        recipient="server",
    )


class TestTimeForPayment:
    def test_linear(self):
        assert calculate_time_for_payment(0.001, 0.001, 60) == pytest.approx(60)
        assert calculate_time_for_payment(0.002, 0.001, 60) == pytest.approx(120)
        assert calculate_time_for_payment(0.0005, 0.001, 60) == pytest.approx(30)

    def test_doubling_payment_doubles_time(self):
        once = calculate_time_for_payment(0.37, 0.1, 3600)
        twice = calculate_time_for_payment(0.74, 0.1, 3600)
        assert twice == pytest.approx(2 * once)

    @pytest.mark.parametrize("price,time", [(0, 60), (-1, 60), (0.001, 0), (0.001, -5)])
    def test_rejects_bad_rate(self, price, time):
        with pytest.raises(PaymentError) as exc_info:
            calculate_time_for_payment(1, price, time)
        assert exc_info.value.code == PaymentErrorCode.INVALID_RATE_CONFIG

    def test_minimum_payment(self):
        assert calculate_minimum_payment(0.001, 60) == 0.001


class TestCalculateCredits:
    def test_empty_transfers(self):
        assert calculate_credits([], 0.001, 60, now=T0) is None

    def test_single_transfer(self):
        """0.002 at price 0.001/60s buys 120s; 10s later 110s remain."""
        credits = calculate_credits([transfer(0.002, T0)], 0.001, 60, now=T0 + 10)
        assert credits.expires_at == pytest.approx(T0 + 120)
        assert credits.time_remaining == pytest.approx(110)
        assert credits.last_transaction.amount == 0.002

    def test_sums_and_anchors_on_latest(self):
        transfers = [transfer(0.0005, T0, "a"), transfer(0.0005, T0 + 30, "b")]
        credits = calculate_credits(transfers, 0.001, 60, now=T0 + 30)
        assert credits.expires_at == pytest.approx(T0 + 30 + 60)
        assert credits.time_remaining == pytest.approx(60)
        assert credits.last_transaction.signature == "b"

    def test_order_independent(self):
        transfers = [transfer(0.0005, T0 + 30, "b"), transfer(0.0005, T0, "a")]
        credits = calculate_credits(transfers, 0.001, 60, now=T0 + 30)
        assert credits.last_transaction.signature == "b"
        assert credits.expires_at == pytest.approx(T0 + 90)

    def test_time_remaining_floors_at_zero(self):
        credits = calculate_credits([transfer(0.001, T0)], 0.001, 60, now=T0 + 600)
        assert credits.time_remaining == 0
        assert credits.expires_at == pytest.approx(T0 + 60)

    def test_bad_rate_propagates(self):
        with pytest.raises(PaymentError):
            calculate_credits([transfer(0.001, T0)], 0, 60, now=T0)


class TestStakeCredits:
    def test_fixed_grant(self):
        credits = calculate_stake_credits(2.5, now=T0)
        assert credits.time_remaining == STAKE_VALIDITY_SECONDS
        assert credits.expires_at == T0 + STAKE_VALIDITY_SECONDS
        assert credits.last_transaction.signature == STAKE_TRANSACTION_ID
        assert credits.last_transaction.amount == 2.5


class TestHasValidCredits:
    def test_none(self):
        assert has_valid_credits(None, now=T0) is False

    def test_valid(self):
        assert has_valid_credits(ClientCredits(time_remaining=50, expires_at=T0 + 50), now=T0) is True

    def test_expired(self):
        assert has_valid_credits(ClientCredits(time_remaining=50, expires_at=T0), now=T0) is False

    def test_zero_remaining(self):
        assert has_valid_credits(ClientCredits(time_remaining=0, expires_at=T0 + 50), now=T0) is False

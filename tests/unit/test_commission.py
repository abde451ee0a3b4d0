"""Tests for the commission calculator."""

from decimal import Decimal
from uuid import uuid4

import pytest

from marketplace.core.exceptions import InvalidAmountError
from marketplace.db.models.booking import Booking, BookingStatus
from marketplace.services.commission import (
    CommissionRates,
    commission_for_booking,
    compute_commission,
    round2,
)


@pytest.fixture
def rates():
    return CommissionRates(agent_rate=Decimal("0.10"), platform_rate=Decimal("0.15"))


def make_booking(total: str, status: BookingStatus = BookingStatus.CONFIRMED) -> Booking:
    return Booking(id=uuid4(), property_id=uuid4(), total_price=Decimal(total), status=status)


class TestComputeCommission:
    """Test the agent/platform split."""

    def test_default_split(self, rates):
        split = compute_commission(Decimal("10000"), rates.agent_rate, rates.platform_rate)
        assert split.agent_amount == Decimal("1000.00")
        assert split.platform_amount == Decimal("1500.00")

    def test_rates_are_independent(self):
        """Rates need not sum to 1; the remainder goes to the partner."""
        split = compute_commission(Decimal("200"), Decimal("0.10"), Decimal("0.15"))
        assert split.agent_amount + split.platform_amount == Decimal("50.00")

    def test_half_up_rounding(self):
        # 0.125 rounds up, not to even
        split = compute_commission(Decimal("1.25"), Decimal("0.10"), Decimal("0.10"))
        assert split.agent_amount == Decimal("0.13")

    def test_rounds_to_cents(self):
        split = compute_commission(Decimal("333.33"), Decimal("0.10"), Decimal("0.15"))
        assert split.agent_amount == Decimal("33.33")
        assert split.platform_amount == Decimal("50.00")

    def test_zero_price(self, rates):
        split = compute_commission(Decimal("0"), rates.agent_rate, rates.platform_rate)
        assert split.agent_amount == Decimal("0.00")
        assert split.platform_amount == Decimal("0.00")

    def test_negative_price_rejected(self, rates):
        with pytest.raises(InvalidAmountError):
            compute_commission(Decimal("-1"), rates.agent_rate, rates.platform_rate)

    def test_idempotent(self, rates):
        """Same inputs, same output, every time."""
        first = compute_commission(Decimal("12345.67"), rates.agent_rate, rates.platform_rate)
        second = compute_commission(Decimal("12345.67"), rates.agent_rate, rates.platform_rate)
        assert first == second


class TestCommissionRates:
    def test_from_settings_defaults(self):
        rates = CommissionRates.from_settings()
        assert rates.agent_rate == Decimal("0.10")
        assert rates.platform_rate == Decimal("0.15")

    def test_with_agent_rate_keeps_platform_rate(self, rates):
        custom = rates.with_agent_rate(Decimal("0.12"))
        assert custom.agent_rate == Decimal("0.12")
        assert custom.platform_rate == Decimal("0.15")

    def test_rate_out_of_range(self):
        with pytest.raises(ValueError):
            CommissionRates(agent_rate=Decimal("1.5"))


class TestCommissionForBooking:
    def test_confirmed_booking(self, rates):
        booking = make_booking("10000.00")
        agent_id, partner_id = uuid4(), uuid4()

        record = commission_for_booking(booking, rates, agent_id, partner_id)

        assert record is not None
        assert record.booking_id == booking.id
        assert record.property_id == booking.property_id
        assert record.agent_id == agent_id
        assert record.partner_id == partner_id
        assert record.agent_commission_amount == Decimal("1000.00")
        assert record.platform_commission_amount == Decimal("1500.00")

    @pytest.mark.parametrize(
        "status",
        [BookingStatus.PENDING, BookingStatus.CANCELLED, BookingStatus.COMPLETED],
    )
    def test_other_statuses_earn_nothing(self, rates, status):
        booking = make_booking("10000.00", status=status)
        assert commission_for_booking(booking, rates, uuid4(), uuid4()) is None

    def test_record_serialization(self, rates):
        record = commission_for_booking(make_booking("99.99"), rates, uuid4(), uuid4())
        data = record.to_dict()
        assert data["booking_amount"] == "99.99"
        assert data["agent_commission_amount"] == "10.00"
        assert data["platform_commission_amount"] == "15.00"


def test_round2():
    assert round2(Decimal("2.675")) == Decimal("2.68")
    assert round2(Decimal("2.674")) == Decimal("2.67")

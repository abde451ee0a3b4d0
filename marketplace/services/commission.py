"""Commission split for confirmed bookings.

Everything here is a pure function of its inputs: the same booking and
rates always give the same amounts, so accrual can be recomputed from the
stored bookings at any time.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

from marketplace.config import settings
from marketplace.core.exceptions import InvalidAmountError
from marketplace.db.models.booking import Booking, BookingStatus

CENT = Decimal("0.01")


def round2(amount: Decimal) -> Decimal:
    """Round half-up to the currency minor unit."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CommissionRates:
    """Rates as fractions of the booking total.

    The two rates are independent; whatever they leave over goes to the
    partner outside this engine.
    """

    agent_rate: Decimal = Decimal("0.10")
    platform_rate: Decimal = Decimal("0.15")

    def __post_init__(self) -> None:
        for name in ("agent_rate", "platform_rate"):
            rate = getattr(self, name)
            if rate < 0 or rate > 1:
                raise ValueError(f"{name} must be between 0 and 1, got {rate}")

    @classmethod
    def from_settings(cls) -> "CommissionRates":
        return cls(
            agent_rate=Decimal(settings.agent_commission_rate),
            platform_rate=Decimal(settings.platform_commission_rate),
        )

    def with_agent_rate(self, agent_rate: Decimal) -> "CommissionRates":
        return CommissionRates(agent_rate=Decimal(agent_rate), platform_rate=self.platform_rate)


@dataclass(frozen=True)
class CommissionSplit:
    agent_amount: Decimal
    platform_amount: Decimal


@dataclass(frozen=True)
class CommissionRecord:
    """Commission earned on one confirmed booking. Derived, never stored."""

    booking_id: UUID
    agent_id: UUID
    partner_id: UUID
    property_id: UUID
    booking_amount: Decimal
    agent_rate: Decimal
    platform_rate: Decimal
    agent_commission_amount: Decimal
    platform_commission_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "booking_id": str(self.booking_id),
            "agent_id": str(self.agent_id),
            "partner_id": str(self.partner_id),
            "property_id": str(self.property_id),
            "booking_amount": str(self.booking_amount),
            "agent_rate": str(self.agent_rate),
            "platform_rate": str(self.platform_rate),
            "agent_commission_amount": str(self.agent_commission_amount),
            "platform_commission_amount": str(self.platform_commission_amount),
        }


def compute_commission(
    total_price: Decimal,
    agent_rate: Decimal,
    platform_rate: Decimal,
) -> CommissionSplit:
    """Split a booking total into the agent's and the platform's commission."""
    total_price = Decimal(total_price)
    if total_price < 0:
        raise InvalidAmountError(f"Booking total cannot be negative: {total_price}")

    return CommissionSplit(
        agent_amount=round2(total_price * Decimal(agent_rate)),
        platform_amount=round2(total_price * Decimal(platform_rate)),
    )


def commission_for_booking(
    booking: Booking,
    rates: CommissionRates,
    agent_id: UUID,
    partner_id: UUID,
) -> Optional[CommissionRecord]:
    """Commission record for a booking, or None unless it is confirmed."""
    if booking.status != BookingStatus.CONFIRMED:
        return None

    split = compute_commission(booking.total_price, rates.agent_rate, rates.platform_rate)
    return CommissionRecord(
        booking_id=booking.id,
        agent_id=agent_id,
        partner_id=partner_id,
        property_id=booking.property_id,
        booking_amount=round2(booking.total_price),
        agent_rate=rates.agent_rate,
        platform_rate=rates.platform_rate,
        agent_commission_amount=split.agent_amount,
        platform_commission_amount=split.platform_amount,
    )

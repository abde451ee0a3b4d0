"""Commission accrual for referral agents.

Earned commission is never stored. It is recomputed on every call from the
confirmed bookings at the properties of the agent's attached partners, so a
booking changing status is reflected the next time anyone asks.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import BalanceInvariantViolation, NotFoundError
from marketplace.core.metrics import record_balance_anomaly
from marketplace.db.models.agent import Agent
from marketplace.db.models.booking import Booking, BookingStatus
from marketplace.db.models.partner import Partner, PartnerStatus, Property
from marketplace.db.models.payout import OPEN_PAYOUT_STATUSES, PayoutRecord, PayoutStatus
from marketplace.db.models.referral import Referral, ReferralStatus
from marketplace.services.commission import (
    CommissionRates,
    CommissionRecord,
    commission_for_booking,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class AgentAccrual:
    """Earned, paid and outstanding commission for one agent."""

    agent_id: UUID
    total_earned: Decimal
    total_paid: Decimal
    pending_balance: Decimal
    total_reserved: Decimal = ZERO  # Payouts requested but not yet settled

    @property
    def available_balance(self) -> Decimal:
        """What a new payout request may still claim."""
        return self.pending_balance - self.total_reserved

    def to_dict(self) -> dict:
        return {
            "agent_id": str(self.agent_id),
            "total_earned": str(self.total_earned),
            "total_paid": str(self.total_paid),
            "pending_balance": str(self.pending_balance),
            "total_reserved": str(self.total_reserved),
            "available_balance": str(self.available_balance),
        }


@dataclass
class AgentStats:
    """Dashboard numbers for an agent."""

    agent_id: UUID
    total_referrals: int
    active_referrals: int
    active_partners: int
    total_properties: int
    confirmed_bookings: int
    accrual: AgentAccrual

    def to_dict(self) -> dict:
        return {
            "agent_id": str(self.agent_id),
            "total_referrals": self.total_referrals,
            "active_referrals": self.active_referrals,
            "active_partners": self.active_partners,
            "total_properties": self.total_properties,
            "confirmed_bookings": self.confirmed_bookings,
            **self.accrual.to_dict(),
        }


class AccrualService:
    """Read-side aggregation of commissions and payouts."""

    def __init__(self, session: AsyncSession, rates: Optional[CommissionRates] = None):
        self.session = session
        self.rates = rates or CommissionRates.from_settings()

    async def _get_agent(self, agent_id: UUID) -> Agent:
        agent = await self.session.get(Agent, agent_id)
        if not agent:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    async def _attached_partner_ids(self, agent_id: UUID) -> list[UUID]:
        stmt = select(Referral.partner_id).where(
            Referral.agent_id == agent_id,
            Referral.status == ReferralStatus.ACTIVE,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _property_owners(self, partner_ids: list[UUID]) -> dict[UUID, UUID]:
        """Map property id to owning partner id."""
        if not partner_ids:
            return {}
        stmt = select(Property.id, Property.partner_id).where(Property.partner_id.in_(partner_ids))
        result = await self.session.execute(stmt)
        return {property_id: partner_id for property_id, partner_id in result.all()}

    async def _confirmed_bookings(self, property_ids: list[UUID]) -> list[Booking]:
        if not property_ids:
            return []
        stmt = (
            select(Booking)
            .where(
                Booking.property_id.in_(property_ids),
                Booking.status == BookingStatus.CONFIRMED,
            )
            .order_by(Booking.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_commissions(self, agent_id: UUID) -> list[CommissionRecord]:
        """Per-booking commission for every confirmed booking the agent earns on."""
        agent = await self._get_agent(agent_id)
        rates = self.rates.with_agent_rate(agent.rate_fraction)

        partner_ids = await self._attached_partner_ids(agent_id)
        owners = await self._property_owners(partner_ids)
        bookings = await self._confirmed_bookings(list(owners))

        records = []
        for booking in bookings:
            record = commission_for_booking(booking, rates, agent.id, owners[booking.property_id])
            if record is not None:
                records.append(record)
        return records

    async def _payout_totals(self, agent_id: UUID) -> tuple[Decimal, Decimal]:
        """Sum paid and still-open payouts for an agent."""
        stmt = select(PayoutRecord.amount, PayoutRecord.status).where(
            PayoutRecord.agent_id == agent_id
        )
        result = await self.session.execute(stmt)

        paid = ZERO
        reserved = ZERO
        for amount, status in result.all():
            if status == PayoutStatus.PAID:
                paid += Decimal(amount)
            elif status in OPEN_PAYOUT_STATUSES:
                reserved += Decimal(amount)
        return paid, reserved

    async def compute_agent_accrual(self, agent_id: UUID) -> AgentAccrual:
        """Recompute earned, paid and pending commission for an agent.

        Raises:
            NotFoundError: unknown agent
            BalanceInvariantViolation: more has been paid than earned
        """
        records = await self.list_commissions(agent_id)
        total_earned = sum((r.agent_commission_amount for r in records), ZERO)
        total_paid, total_reserved = await self._payout_totals(agent_id)

        accrual = AgentAccrual(
            agent_id=agent_id,
            total_earned=total_earned,
            total_paid=total_paid,
            pending_balance=total_earned - total_paid,
            total_reserved=total_reserved,
        )

        if accrual.pending_balance < 0:
            record_balance_anomaly()
            logger.error(
                f"Balance invariant violated for agent {agent_id}: "
                f"paid {total_paid} exceeds earned {total_earned}"
            )
            raise BalanceInvariantViolation(
                f"Agent {agent_id} has been paid {total_paid} but earned only {total_earned}",
                code="balance_invariant_violation",
            )

        return accrual

    async def get_agent_stats(self, agent_id: UUID) -> AgentStats:
        """Referral, property and booking counts plus accrual."""
        accrual = await self.compute_agent_accrual(agent_id)

        referrals_stmt = select(Referral.status, Partner.status).join(
            Partner, Partner.id == Referral.partner_id
        ).where(Referral.agent_id == agent_id)
        referrals_result = await self.session.execute(referrals_stmt)
        rows = referrals_result.all()

        active_partner_ids = await self._attached_partner_ids(agent_id)
        owners = await self._property_owners(active_partner_ids)

        confirmed = 0
        if owners:
            bookings_stmt = select(func.count()).select_from(Booking).where(
                Booking.property_id.in_(list(owners)),
                Booking.status == BookingStatus.CONFIRMED,
            )
            bookings_result = await self.session.execute(bookings_stmt)
            confirmed = bookings_result.scalar() or 0

        return AgentStats(
            agent_id=agent_id,
            total_referrals=len(rows),
            active_referrals=sum(1 for ref_status, _ in rows if ref_status == ReferralStatus.ACTIVE),
            active_partners=sum(
                1
                for ref_status, partner_status in rows
                if ref_status == ReferralStatus.ACTIVE and partner_status == PartnerStatus.ACTIVE
            ),
            total_properties=len(owners),
            confirmed_bookings=confirmed,
            accrual=accrual,
        )

    async def list_agent_balances(self) -> list[dict]:
        """Accrual for every agent, for the admin payments overview.

        An agent in violation of the balance invariant is flagged in place so
        one bad record does not hide everyone else's balances.
        """
        result = await self.session.execute(select(Agent).order_by(Agent.created_at))
        agents = result.scalars().all()

        balances = []
        for agent in agents:
            entry = {
                "agent": agent.to_dict(),
                "anomaly": None,
            }
            try:
                accrual = await self.compute_agent_accrual(agent.id)
                entry.update(accrual.to_dict())
            except BalanceInvariantViolation as e:
                entry["anomaly"] = e.message
            balances.append(entry)

        return balances

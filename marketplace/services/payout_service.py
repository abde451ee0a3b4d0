"""Service for the agent payout ledger.

Payouts are ledger entries only; money moves outside this system. A payout
is created pending (agent request) or paid (admin-recorded payment) and
settles exactly once, to paid or rejected. Settled records are immutable.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.core.exceptions import (
    AgentNotActiveError,
    ExceedsAvailableBalanceError,
    InvalidAmountError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
)
from marketplace.core.metrics import record_payout
from marketplace.db.database import with_write_timeout
from marketplace.db.models.agent import Agent, AgentStatus
from marketplace.db.models.payout import PayoutRecord, PayoutStatus
from marketplace.services.accrual_service import AccrualService, AgentAccrual
from marketplace.services.commission import CommissionRates, round2
from marketplace.services.referral_service import BASE36_DIGITS, to_base36

logger = logging.getLogger(__name__)


class PayoutError(MarketplaceError):
    """Payout-specific error."""

    pass


def generate_transaction_ref() -> str:
    """Reference for an admin-recorded payment, e.g. ``TXN-M1A2B3C4-X7K2P``."""
    stamp = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(BASE36_DIGITS) for _ in range(5))
    return f"TXN-{stamp}-{suffix}"


class PayoutService:
    """Service for requesting, recording and settling payouts."""

    def __init__(self, session: AsyncSession, rates: Optional[CommissionRates] = None):
        self.session = session
        self.accruals = AccrualService(session, rates)

    def _validate_amount(self, amount: Decimal) -> Decimal:
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmountError("Payout amount must be greater than zero", code="invalid_amount")
        if round2(amount) != amount:
            raise InvalidAmountError(
                f"Payout amount {amount} has more than two decimal places",
                code="invalid_amount",
            )
        if amount < settings.min_payout_amount:
            raise InvalidAmountError(
                f"Minimum payout is {settings.min_payout_amount}",
                code="invalid_amount",
            )
        return amount

    def _validate_method(self, method: str) -> None:
        if method not in settings.payout_methods:
            raise PayoutError(
                f"Unsupported payment method {method!r}",
                code="invalid_payment_method",
            )

    async def _lock_agent(self, agent_id: UUID) -> Agent:
        """Lock the agent row so balance check and write are not interleaved.

        Concurrent payout operations for one agent queue up on this lock for
        the rest of the transaction.
        The row is reloaded even if the session already holds the agent, so
        status checks see changes committed since it was first read.
        """
        result = await self.session.execute(
            select(Agent)
            .where(Agent.id == agent_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        agent = result.scalar_one_or_none()
        if not agent:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    async def _check_available(self, agent_id: UUID, amount: Decimal) -> AgentAccrual:
        accrual = await self.accruals.compute_agent_accrual(agent_id)
        if amount > accrual.available_balance:
            raise ExceedsAvailableBalanceError(
                f"Requested {amount} exceeds available balance {accrual.available_balance}",
                code="exceeds_available_balance",
            )
        return accrual

    async def get_by_idempotency_key(self, key: str) -> Optional[PayoutRecord]:
        result = await self.session.execute(
            select(PayoutRecord).where(PayoutRecord.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def _existing_for_key(self, agent_id: UUID, key: str) -> Optional[PayoutRecord]:
        existing = await self.get_by_idempotency_key(key)
        if existing and existing.agent_id != agent_id:
            raise PayoutError("Idempotency key already used", code="idempotency_conflict")
        return existing

    async def _insert(self, payout: PayoutRecord, what: str) -> tuple[PayoutRecord, bool]:
        """Write a new payout; on a key clash return the row that won instead."""
        try:
            async with self.session.begin_nested():
                self.session.add(payout)
                await with_write_timeout(self.session.flush(), what)
        except IntegrityError:
            if not payout.idempotency_key:
                raise
            # Same key committed by a concurrent request
            existing = await self._existing_for_key(payout.agent_id, payout.idempotency_key)
            if existing is None:
                raise
            return existing, False
        return payout, True

    async def request_payout(
        self,
        agent_id: UUID,
        amount: Decimal,
        payment_method: str,
        payment_details: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> PayoutRecord:
        """
        Create a pending payout request for an agent.

        The amount must fit in the agent's available balance: pending
        balance minus payouts already requested and not yet settled. A
        request repeated with the same idempotency key returns the record
        created the first time.
        """
        amount = self._validate_amount(amount)
        self._validate_method(payment_method)

        if idempotency_key:
            existing = await self._existing_for_key(agent_id, idempotency_key)
            if existing:
                return existing

        agent = await self._lock_agent(agent_id)
        if agent.status != AgentStatus.ACTIVE:
            raise AgentNotActiveError(
                f"Agent is {agent.status.value}; payout requests are disabled",
                code="agent_not_active",
            )

        await self._check_available(agent_id, amount)

        payout = PayoutRecord(
            agent_id=agent_id,
            amount=amount,
            payment_method=payment_method,
            payment_details=payment_details or {},
            status=PayoutStatus.PENDING,
            idempotency_key=idempotency_key,
        )
        payout, created = await self._insert(payout, "payout creation")
        if not created:
            return payout

        logger.info(f"Payout {payout.id} of {amount} requested by agent {agent_id}")
        record_payout(PayoutStatus.PENDING.value, amount)
        return payout

    async def record_payment(
        self,
        agent_id: UUID,
        amount: Decimal,
        payment_method: str,
        admin_id: str,
        transaction_ref: Optional[str] = None,
        notes: Optional[str] = None,
        payment_details: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> PayoutRecord:
        """
        Record a payment an administrator already made (admin action).

        Creates the payout directly as paid. Suspended agents can still be
        settled; pending and rejected agents have nothing to settle. Retrying
        with the same idempotency key returns the first record.
        """
        amount = self._validate_amount(amount)
        self._validate_method(payment_method)

        if idempotency_key:
            existing = await self._existing_for_key(agent_id, idempotency_key)
            if existing:
                return existing

        agent = await self._lock_agent(agent_id)
        if agent.status not in (AgentStatus.ACTIVE, AgentStatus.SUSPENDED):
            raise AgentNotActiveError(
                f"Cannot record a payment for a {agent.status.value} agent",
                code="agent_not_active",
            )

        await self._check_available(agent_id, amount)

        payout = PayoutRecord(
            agent_id=agent_id,
            amount=amount,
            payment_method=payment_method,
            payment_details=payment_details or {},
            status=PayoutStatus.PAID,
            transaction_ref=(transaction_ref or "").strip() or generate_transaction_ref(),
            notes=notes,
            processed_by=admin_id,
            processed_at=datetime.now(timezone.utc),
            idempotency_key=idempotency_key,
        )
        payout, created = await self._insert(payout, "payment recording")
        if not created:
            return payout

        logger.info(
            f"Payment {payout.transaction_ref} of {amount} recorded for agent {agent_id} by {admin_id}"
        )
        record_payout(PayoutStatus.PAID.value, amount)
        return payout

    async def _get_open_payout(self, payout_id: UUID) -> PayoutRecord:
        result = await self.session.execute(
            select(PayoutRecord)
            .where(PayoutRecord.id == payout_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payout = result.scalar_one_or_none()
        if not payout:
            raise NotFoundError("Payout not found")

        if payout.is_settled:
            raise InvalidTransitionError(
                f"Payout is already {payout.status.value} and cannot change",
                code="payout_settled",
            )
        return payout

    async def mark_paid(
        self,
        payout_id: UUID,
        admin_id: str,
        transaction_ref: Optional[str] = None,
    ) -> PayoutRecord:
        """
        Mark a pending payout as paid (admin action).

        Re-checks that paying it keeps total paid within total earned, since
        bookings may have been cancelled after the request was made.
        """
        payout = await self._get_open_payout(payout_id)
        await self._lock_agent(payout.agent_id)

        accrual = await self.accruals.compute_agent_accrual(payout.agent_id)
        if accrual.total_paid + payout.amount > accrual.total_earned:
            raise ExceedsAvailableBalanceError(
                f"Paying {payout.amount} would exceed earned commission "
                f"({accrual.total_paid} of {accrual.total_earned} already paid)",
                code="exceeds_available_balance",
            )

        payout.status = PayoutStatus.PAID
        payout.processed_by = admin_id
        payout.processed_at = datetime.now(timezone.utc)
        if transaction_ref:
            payout.transaction_ref = transaction_ref
        await with_write_timeout(self.session.flush(), "payout settlement")

        logger.info(f"Payout {payout_id} of {payout.amount} marked paid by {admin_id}")
        record_payout(PayoutStatus.PAID.value, payout.amount)
        return payout

    async def mark_rejected(
        self,
        payout_id: UUID,
        admin_id: str,
        reason: Optional[str] = None,
    ) -> PayoutRecord:
        """
        Reject a pending payout (admin action).

        The reserved amount returns to the agent's available balance.
        """
        payout = await self._get_open_payout(payout_id)

        payout.status = PayoutStatus.REJECTED
        payout.processed_by = admin_id
        payout.processed_at = datetime.now(timezone.utc)
        payout.rejection_reason = reason
        await self.session.flush()

        logger.info(f"Payout {payout_id} rejected by {admin_id}: {reason}")
        record_payout(PayoutStatus.REJECTED.value, payout.amount)
        return payout

    async def get_payout(self, payout_id: UUID) -> Optional[PayoutRecord]:
        """Get a payout by ID."""
        return await self.session.get(PayoutRecord, payout_id)

    async def list_agent_payouts(
        self,
        agent_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PayoutRecord]:
        """Get payout history for an agent."""
        result = await self.session.execute(
            select(PayoutRecord)
            .where(PayoutRecord.agent_id == agent_id)
            .order_by(PayoutRecord.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_payouts(
        self,
        status: Optional[PayoutStatus] = None,
        limit: int = 50,
    ) -> list[PayoutRecord]:
        """Get payouts across agents, optionally filtered by status."""
        query = select(PayoutRecord)
        if status:
            query = query.where(PayoutRecord.status == status)
        result = await self.session.execute(
            query.order_by(PayoutRecord.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

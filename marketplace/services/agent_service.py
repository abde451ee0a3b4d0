"""Agent registration and lifecycle.

Status graph (admin actions only):

    pending -> active | rejected
    active -> suspended
    suspended -> active

Deletion is refused while anything still references the agent.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.core.exceptions import (
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    ReferentialIntegrityError,
)
from marketplace.core.metrics import record_agent_registered, record_agent_transition
from marketplace.db.models.agent import Agent, AgentStatus
from marketplace.db.models.payout import PayoutRecord
from marketplace.db.models.referral import Referral
from marketplace.services.referral_service import ReferralService

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[AgentStatus, set[AgentStatus]] = {
    AgentStatus.PENDING: {AgentStatus.ACTIVE, AgentStatus.REJECTED},
    AgentStatus.ACTIVE: {AgentStatus.SUSPENDED},
    AgentStatus.SUSPENDED: {AgentStatus.ACTIVE},
    AgentStatus.REJECTED: set(),
}


def can_transition(current: AgentStatus, target: AgentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class AgentService:
    """Service for agent registration, lookup and status changes."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.referrals = ReferralService(session)

    async def get_agent(self, agent_id: UUID) -> Agent:
        agent = await self.session.get(Agent, agent_id)
        if not agent:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    async def get_agent_by_user(self, user_id: UUID) -> Optional[Agent]:
        result = await self.session.execute(select(Agent).where(Agent.user_id == user_id))
        return result.scalar_one_or_none()

    async def register_agent(
        self,
        user_id: UUID,
        display_name: str,
        contact_email: Optional[str] = None,
        contact_phone: Optional[str] = None,
        commission_rate: Optional[Decimal] = None,
    ) -> Agent:
        """Create a pending agent with a freshly issued referral code."""
        if await self.get_agent_by_user(user_id):
            raise MarketplaceError(
                "User is already registered as an agent",
                code="agent_exists",
            )

        if commission_rate is None:
            commission_rate = Decimal(settings.agent_commission_rate) * 100

        for _ in range(settings.referral_code_max_attempts):
            code = await self.referrals.issue_code()
            agent = Agent(
                user_id=user_id,
                referral_code=code,
                display_name=display_name,
                status=AgentStatus.PENDING,
                commission_rate=Decimal(commission_rate),
                contact_email=contact_email,
                contact_phone=contact_phone,
            )
            try:
                async with self.session.begin_nested():
                    self.session.add(agent)
                    await self.session.flush()
            except IntegrityError:
                # Code taken between the check and the insert, or the user
                # registered concurrently
                if await self.get_agent_by_user(user_id):
                    raise MarketplaceError(
                        "User is already registered as an agent",
                        code="agent_exists",
                    )
                logger.warning(f"Referral code {code} taken concurrently, retrying")
                continue

            logger.info(f"Agent {agent.id} registered with code {code}")
            record_agent_registered()
            return agent

        raise MarketplaceError(
            "Could not generate a unique referral code",
            code="referral_code_exhausted",
        )

    async def transition(
        self,
        agent_id: UUID,
        target: AgentStatus,
        admin_id: str,
    ) -> Agent:
        """Move an agent to a new status (admin action)."""
        agent = await self.get_agent(agent_id)
        current = agent.status

        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Cannot move agent from {current.value} to {target.value}",
                code="invalid_transition",
            )

        agent.status = target
        if current == AgentStatus.PENDING and target == AgentStatus.ACTIVE:
            agent.approved_at = datetime.now(timezone.utc)
            agent.approved_by = admin_id
        await self.session.flush()

        logger.info(f"Agent {agent_id} moved from {current.value} to {target.value} by {admin_id}")
        record_agent_transition(target.value)
        return agent

    async def approve(self, agent_id: UUID, admin_id: str) -> Agent:
        return await self.transition(agent_id, AgentStatus.ACTIVE, admin_id)

    async def reject(self, agent_id: UUID, admin_id: str) -> Agent:
        return await self.transition(agent_id, AgentStatus.REJECTED, admin_id)

    async def suspend(self, agent_id: UUID, admin_id: str) -> Agent:
        return await self.transition(agent_id, AgentStatus.SUSPENDED, admin_id)

    async def reactivate(self, agent_id: UUID, admin_id: str) -> Agent:
        return await self.transition(agent_id, AgentStatus.ACTIVE, admin_id)

    async def delete_agent(self, agent_id: UUID, admin_id: str) -> None:
        """Hard-delete an agent (admin action).

        Refused while any attachment or payout references the agent; use
        suspension to take such an agent out of service.
        """
        agent = await self.get_agent(agent_id)

        referral_count = await self.session.scalar(
            select(func.count()).select_from(Referral).where(Referral.agent_id == agent_id)
        )
        if referral_count:
            raise ReferentialIntegrityError(
                f"Agent has {referral_count} referral(s); suspend instead of deleting",
                code="agent_has_referrals",
            )

        payout_count = await self.session.scalar(
            select(func.count()).select_from(PayoutRecord).where(PayoutRecord.agent_id == agent_id)
        )
        if payout_count:
            raise ReferentialIntegrityError(
                f"Agent has {payout_count} payout record(s); suspend instead of deleting",
                code="agent_has_payouts",
            )

        await self.session.delete(agent)
        await self.session.flush()
        logger.info(f"Agent {agent_id} deleted by {admin_id}")

    async def list_agents(
        self,
        status: Optional[AgentStatus] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Agent]:
        """List agents, optionally filtered by status or a name/code search."""
        stmt = select(Agent)
        if status:
            stmt = stmt.where(Agent.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Agent.display_name).like(pattern),
                    func.lower(Agent.referral_code).like(pattern),
                )
            )
        stmt = stmt.order_by(Agent.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

"""API routes for referral agents."""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import MarketplaceError, conflict, not_found, to_http_exception
from marketplace.core.security import get_current_user_id
from marketplace.db.database import get_session
from marketplace.db.models.agent import Agent
from marketplace.services.accrual_service import AccrualService
from marketplace.services.agent_service import AgentService
from marketplace.services.referral_service import ReferralService


router = APIRouter()


class RegisterAgentRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100)
    contact_email: str | None = Field(None, max_length=255)
    contact_phone: str | None = Field(None, max_length=50)


async def get_current_agent(
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> Agent:
    """The agent record of the authenticated user."""
    agent = await AgentService(session).get_agent_by_user(user_id)
    if agent is None:
        raise not_found("No agent registered for this user")
    return agent


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_agent(
    request: RegisterAgentRequest,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Register the current user as an agent, pending admin approval."""
    service = AgentService(session)
    try:
        agent = await service.register_agent(
            user_id=user_id,
            display_name=request.display_name,
            contact_email=request.contact_email,
            contact_phone=request.contact_phone,
        )
    except MarketplaceError as e:
        if e.code == "agent_exists":
            raise conflict(e.message) from e
        raise to_http_exception(e) from e

    await session.commit()
    return {
        **agent.to_dict(),
        "share_url": service.referrals.share_link(agent.referral_code),
        "message": "Registration received. An administrator will review it.",
    }


@router.get("/me")
async def get_me(agent: Agent = Depends(get_current_agent)) -> dict:
    return agent.to_dict()


@router.get("/me/referral-link")
async def get_referral_link(
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """The agent's code and the registration link to share with hosts."""
    return {
        "code": agent.referral_code,
        "share_url": ReferralService(session).share_link(agent.referral_code),
        "active": agent.is_active,
    }


@router.get("/me/accrual")
async def get_accrual(
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Earned, paid and pending commission."""
    try:
        accrual = await AccrualService(session).compute_agent_accrual(agent.id)
    except MarketplaceError as e:
        raise to_http_exception(e) from e
    return accrual.to_dict()


@router.get("/me/stats")
async def get_stats(
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Dashboard summary for the current agent."""
    try:
        stats = await AccrualService(session).get_agent_stats(agent.id)
    except MarketplaceError as e:
        raise to_http_exception(e) from e
    return {
        "referral_code": agent.referral_code,
        "status": agent.status.value,
        **stats.to_dict(),
    }


@router.get("/me/commissions")
async def get_commissions(
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Per-booking commission breakdown."""
    records = await AccrualService(session).list_commissions(agent.id)
    return {
        "commissions": [r.to_dict() for r in records],
        "count": len(records),
    }


@router.get("/me/referrals")
async def get_referrals(
    limit: int = 50,
    offset: int = 0,
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Partners attached to the current agent."""
    referrals = await ReferralService(session).list_agent_referrals(
        agent.id, limit=limit, offset=offset
    )
    return {
        "referrals": [r.to_dict() for r in referrals],
        "count": len(referrals),
    }

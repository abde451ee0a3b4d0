"""Admin API routes.

Provides endpoints for administrators to:
- Approve, reject, suspend, reactivate and delete agents
- Review agent balances and commission breakdowns
- Settle payout requests and record direct payments
- Deactivate referral attachments
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import MarketplaceError, to_http_exception
from marketplace.core.security import get_client_ip, log_admin_action, require_admin
from marketplace.db.database import get_session
from marketplace.db.models.agent import AgentStatus
from marketplace.db.models.payout import PayoutStatus
from marketplace.services.accrual_service import AccrualService
from marketplace.services.agent_service import AgentService
from marketplace.services.payout_service import PayoutService
from marketplace.services.referral_service import ReferralService


router = APIRouter()


class AgentStatusRequest(BaseModel):
    """Target status for an agent."""
    status: AgentStatus


class MarkPaidRequest(BaseModel):
    transaction_ref: Optional[str] = Field(None, max_length=100)


class RejectPayoutRequest(BaseModel):
    reason: Optional[str] = None


class RecordPaymentRequest(BaseModel):
    """A payment the admin already made outside the system."""
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_method: str
    transaction_ref: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    payment_details: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = Field(None, max_length=100)


# Agent Management
@router.get("/agents")
async def list_agents(
    status_filter: Optional[AgentStatus] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """List agents, searchable by name or referral code."""
    agents = await AgentService(session).list_agents(
        status=status_filter, search=search, limit=limit, offset=offset
    )
    return {
        "agents": [a.to_dict() for a in agents],
        "count": len(agents),
    }


@router.post("/agents/{agent_id}/status")
async def change_agent_status(
    agent_id: UUID,
    body: AgentStatusRequest,
    request: Request,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Approve, reject, suspend or reactivate an agent."""
    service = AgentService(session)
    try:
        agent = await service.transition(agent_id, body.status, admin["id"])
    except MarketplaceError as e:
        raise to_http_exception(e) from e

    await log_admin_action(
        session=session,
        admin_id=admin["id"],
        action="change_agent_status",
        resource_type="agent",
        resource_id=str(agent_id),
        details={"status": body.status.value},
        ip_address=get_client_ip(request),
    )
    await session.commit()

    return agent.to_dict()


@router.delete("/agents/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(
    agent_id: UUID,
    request: Request,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> None:
    """Delete an agent that has no referrals or payouts."""
    try:
        await AgentService(session).delete_agent(agent_id, admin["id"])
    except MarketplaceError as e:
        raise to_http_exception(e) from e

    await log_admin_action(
        session=session,
        admin_id=admin["id"],
        action="delete_agent",
        resource_type="agent",
        resource_id=str(agent_id),
        ip_address=get_client_ip(request),
    )
    await session.commit()


@router.get("/agents/{agent_id}/accrual")
async def get_agent_accrual(
    agent_id: UUID,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    try:
        stats = await AccrualService(session).get_agent_stats(agent_id)
    except MarketplaceError as e:
        raise to_http_exception(e) from e
    return stats.to_dict()


@router.get("/agents/{agent_id}/commissions")
async def get_agent_commissions(
    agent_id: UUID,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Per-booking commission breakdown for an agent."""
    try:
        records = await AccrualService(session).list_commissions(agent_id)
    except MarketplaceError as e:
        raise to_http_exception(e) from e
    return {
        "commissions": [r.to_dict() for r in records],
        "count": len(records),
    }


@router.get("/balances")
async def list_balances(
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Earned, paid and pending commission for every agent."""
    balances = await AccrualService(session).list_agent_balances()
    return {
        "balances": balances,
        "anomalies": sum(1 for b in balances if b["anomaly"]),
    }


# Payout Management
@router.get("/payouts")
async def list_payouts(
    status_filter: Optional[PayoutStatus] = None,
    limit: int = 50,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    payouts = await PayoutService(session).list_payouts(status_filter, limit)
    return {
        "payouts": [p.to_dict() for p in payouts],
        "count": len(payouts),
    }


@router.post("/payouts/{payout_id}/paid")
async def mark_payout_paid(
    payout_id: UUID,
    body: MarkPaidRequest,
    request: Request,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Mark a pending payout as paid."""
    try:
        payout = await PayoutService(session).mark_paid(payout_id, admin["id"], body.transaction_ref)
    except MarketplaceError as e:
        raise to_http_exception(e) from e

    await log_admin_action(
        session=session,
        admin_id=admin["id"],
        action="mark_payout_paid",
        resource_type="payout",
        resource_id=str(payout_id),
        details={"amount": str(payout.amount)},
        ip_address=get_client_ip(request),
    )
    await session.commit()

    return payout.to_dict()


@router.post("/payouts/{payout_id}/reject")
async def reject_payout(
    payout_id: UUID,
    body: RejectPayoutRequest,
    request: Request,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Reject a pending payout; its amount becomes available again."""
    try:
        payout = await PayoutService(session).mark_rejected(payout_id, admin["id"], body.reason)
    except MarketplaceError as e:
        raise to_http_exception(e) from e

    await log_admin_action(
        session=session,
        admin_id=admin["id"],
        action="reject_payout",
        resource_type="payout",
        resource_id=str(payout_id),
        details={"reason": body.reason},
        ip_address=get_client_ip(request),
    )
    await session.commit()

    return payout.to_dict()


@router.post("/agents/{agent_id}/payments", status_code=status.HTTP_201_CREATED)
async def record_payment(
    agent_id: UUID,
    body: RecordPaymentRequest,
    request: Request,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Record a payment made to an agent outside the system."""
    try:
        payout = await PayoutService(session).record_payment(
            agent_id=agent_id,
            amount=body.amount,
            payment_method=body.payment_method,
            admin_id=admin["id"],
            transaction_ref=body.transaction_ref,
            notes=body.notes,
            payment_details=body.payment_details,
            idempotency_key=body.idempotency_key,
        )
    except MarketplaceError as e:
        raise to_http_exception(e) from e

    await log_admin_action(
        session=session,
        admin_id=admin["id"],
        action="record_payment",
        resource_type="payout",
        resource_id=str(payout.id),
        details={"agent_id": str(agent_id), "amount": str(payout.amount)},
        ip_address=get_client_ip(request),
    )
    await session.commit()

    return payout.to_dict()


# Referral Management
@router.post("/referrals/{referral_id}/deactivate")
async def deactivate_referral(
    referral_id: UUID,
    request: Request,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Stop a referral from accruing commission. The partner is not re-attachable."""
    try:
        referral = await ReferralService(session).deactivate_attachment(referral_id)
    except MarketplaceError as e:
        raise to_http_exception(e) from e

    await log_admin_action(
        session=session,
        admin_id=admin["id"],
        action="deactivate_referral",
        resource_type="referral",
        resource_id=str(referral_id),
        ip_address=get_client_ip(request),
    )
    await session.commit()

    return referral.to_dict()

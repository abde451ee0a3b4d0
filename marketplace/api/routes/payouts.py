"""API routes for agent payout requests."""

from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.routes.agents import get_current_agent
from marketplace.core.exceptions import MarketplaceError, to_http_exception
from marketplace.db.database import get_session
from marketplace.db.models.agent import Agent
from marketplace.services.payout_service import PayoutService

router = APIRouter()


class CreatePayoutRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount to pay out")
    payment_method: str = Field(..., description="bank, mpesa, airtel or paypal")
    payment_details: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(
        None,
        max_length=100,
        description="Send the same key when retrying so the request is not duplicated",
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payout(
    request: CreatePayoutRequest,
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """
    Request a payout of earned commission.

    The request stays pending until an administrator marks it paid or
    rejects it. Its amount is held against the available balance meanwhile.
    """
    service = PayoutService(session)

    try:
        payout = await service.request_payout(
            agent_id=agent.id,
            amount=request.amount,
            payment_method=request.payment_method,
            payment_details=request.payment_details,
            idempotency_key=request.idempotency_key,
        )
        await session.commit()
        return payout.to_dict()
    except MarketplaceError as e:
        raise to_http_exception(e) from e


@router.get("")
async def list_payouts(
    limit: int = 50,
    offset: int = 0,
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> list[dict[str, Any]]:
    """Get payout history for the authenticated agent."""
    service = PayoutService(session)
    payouts = await service.list_agent_payouts(agent.id, limit, offset)
    return [p.to_dict() for p in payouts]


@router.get("/{payout_id}")
async def get_payout(
    payout_id: UUID,
    agent: Agent = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    """Get a specific payout."""
    service = PayoutService(session)
    payout = await service.get_payout(payout_id)

    if not payout:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payout not found",
        )

    if payout.agent_id != agent.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view this payout",
        )

    return payout.to_dict()

"""API routes for partner registration."""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.security import get_current_user_id
from marketplace.db.database import get_session
from marketplace.services.partner_service import PartnerService
from marketplace.services.referral_service import ReferralService


router = APIRouter()


class RegisterPartnerRequest(BaseModel):
    business_name: str | None = Field(None, max_length=255)
    referral_code: str | None = Field(None, max_length=20, description="Code from the ?ref= link")


@router.post("/register")
async def register_partner(
    request: RegisterPartnerRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """
    Register the current user as a partner.

    A referral code that is unknown or belongs to an inactive agent is
    reported back but does not fail the registration.
    """
    service = PartnerService(session)
    registration = await service.register_partner(
        user_id=user_id,
        referral_code=(request.referral_code or "").strip() or None,
        business_name=request.business_name,
    )
    await session.commit()

    response.status_code = status.HTTP_201_CREATED if registration.created else status.HTTP_200_OK
    return registration.to_dict()


@router.get("/referral-codes/{code}")
async def validate_code(
    code: str,
    session: AsyncSession = Depends(get_session),
) -> dict:
    """Check a referral code before registering (public endpoint)."""
    valid = await ReferralService(session).validate_code(code)
    return {"code": code, "valid": valid}

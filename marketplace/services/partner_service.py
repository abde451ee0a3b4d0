"""Partner registration with optional referral attribution."""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db.models.partner import Partner, PartnerStatus
from marketplace.services.referral_service import AttachmentResult, ReferralService

logger = logging.getLogger(__name__)


@dataclass
class PartnerRegistration:
    partner: Partner
    created: bool
    attachment: Optional[AttachmentResult] = None

    def to_dict(self) -> dict:
        return {
            "partner": self.partner.to_dict(),
            "created": self.created,
            "referral": self.attachment.to_dict() if self.attachment else None,
        }


class PartnerService:
    """Service for partner sign-up."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.referrals = ReferralService(session)

    async def get_partner_by_user(self, user_id: UUID) -> Optional[Partner]:
        result = await self.session.execute(select(Partner).where(Partner.user_id == user_id))
        return result.scalar_one_or_none()

    async def _get_or_create(self, user_id: UUID, business_name: Optional[str]) -> tuple[Partner, bool]:
        partner = await self.get_partner_by_user(user_id)
        if partner:
            return partner, False

        partner = Partner(
            user_id=user_id,
            business_name=business_name,
            status=PartnerStatus.PENDING,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(partner)
                await self.session.flush()
        except IntegrityError:
            # Registered concurrently for the same user
            existing = await self.get_partner_by_user(user_id)
            if existing is None:
                raise
            return existing, False

        logger.info(f"Partner {partner.id} registered for user {user_id}")
        return partner, True

    async def register_partner(
        self,
        user_id: UUID,
        referral_code: Optional[str] = None,
        business_name: Optional[str] = None,
    ) -> PartnerRegistration:
        """
        Register a partner and attribute it to a referring agent.

        Idempotent per user: registering again returns the existing partner.
        The referral code is optional and never blocks the registration; a
        partner already attached keeps its first agent.
        """
        partner, created = await self._get_or_create(user_id, business_name)

        attachment = None
        if referral_code:
            attachment = await self.referrals.resolve_attachment(referral_code, partner.id)

        return PartnerRegistration(partner=partner, created=created, attachment=attachment)

"""Referral system service.

Handles:
- Referral code generation
- Attaching a newly registered partner to the agent whose code it used
- Attachment lookups for dashboards and admin tools
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.core.exceptions import (
    AlreadyAttachedError,
    InactiveReferrerError,
    InvalidCodeError,
    MarketplaceError,
    NotFoundError,
    ReferralError,
)
from marketplace.core.metrics import record_attachment
from marketplace.db.models.agent import Agent, AgentStatus
from marketplace.db.models.referral import Referral, ReferralStatus

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
BASE36_DIGITS = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def generate_referral_code(random_length: Optional[int] = None) -> str:
    """Generate a shareable referral code.

    Base-36 millisecond timestamp followed by a random suffix, all uppercase
    alphanumeric. Twelve characters with the default suffix length.
    """
    length = random_length if random_length is not None else settings.referral_code_random_length
    prefix = to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    return prefix + suffix


class AttachmentOutcome(str, Enum):
    ATTACHED = "attached"
    INVALID_CODE = "invalid_code"
    INACTIVE_REFERRER = "inactive_referrer"
    ALREADY_ATTACHED = "already_attached"
    FAILED = "failed"


@dataclass
class AttachmentResult:
    """What happened to the referral code presented at registration."""

    outcome: AttachmentOutcome
    referral: Optional[Referral] = None
    message: Optional[str] = None

    @property
    def attached(self) -> bool:
        return self.outcome == AttachmentOutcome.ATTACHED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "attached": self.attached,
            "referral": self.referral.to_dict() if self.referral else None,
            "message": self.message,
        }


class ReferralService:
    """Service for managing referral codes and attachments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def code_exists(self, code: str) -> bool:
        stmt = select(Agent.id).where(Agent.referral_code == code)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def issue_code(self) -> str:
        """Generate a code no agent holds yet."""
        for _ in range(settings.referral_code_max_attempts):
            code = generate_referral_code()
            if not await self.code_exists(code):
                return code
            logger.warning(f"Referral code collision on {code}, regenerating")

        raise MarketplaceError(
            "Could not generate a unique referral code",
            code="referral_code_exhausted",
        )

    async def get_agent_by_code(self, code: str) -> Optional[Agent]:
        """Look up an agent by referral code. Exact, case-sensitive match."""
        stmt = select(Agent).where(Agent.referral_code == code)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_attachment(self, partner_id: UUID) -> Optional[Referral]:
        """Get the attachment for a partner, if any."""
        stmt = select(Referral).where(Referral.partner_id == partner_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def validate_code(self, code: str) -> bool:
        """Whether a code would attach a partner right now."""
        agent = await self.get_agent_by_code(code)
        return agent is not None and agent.status == AgentStatus.ACTIVE

    async def attach(self, code: str, partner_id: UUID) -> Referral:
        """Attach a partner to the agent holding ``code``.

        Raises:
            AlreadyAttachedError: partner already has an attachment
            InvalidCodeError: no agent holds the code
            InactiveReferrerError: the agent is not active
        """
        existing = await self.get_attachment(partner_id)
        if existing:
            raise AlreadyAttachedError(
                f"Partner {partner_id} is already attached to agent {existing.agent_id}",
                code="already_attached",
            )

        agent = await self.get_agent_by_code(code) if code else None
        if not agent:
            raise InvalidCodeError(f"Referral code {code!r} not found", code="invalid_code")

        if agent.status != AgentStatus.ACTIVE:
            raise InactiveReferrerError(
                f"Referring agent {agent.id} is {agent.status.value}",
                code="inactive_referrer",
            )

        referral = Referral(
            agent_id=agent.id,
            partner_id=partner_id,
            code_used=agent.referral_code,
            status=ReferralStatus.ACTIVE,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(referral)
                await self.session.flush()
        except IntegrityError as e:
            # Lost a race against a concurrent registration for this partner
            raise AlreadyAttachedError(
                f"Partner {partner_id} was attached concurrently",
                code="already_attached",
            ) from e

        logger.info(f"Partner {partner_id} attached to agent {agent.id} via {agent.referral_code}")
        return referral

    async def resolve_attachment(self, code: str, partner_id: UUID) -> AttachmentResult:
        """Best-effort attachment at partner registration.

        Never raises: a referral problem must not block the registration.
        Unexpected store failures are logged for the operator and reported
        as FAILED. Lookups and insert share one savepoint, so a failed
        statement leaves the caller's transaction usable.
        """
        try:
            async with self.session.begin_nested():
                referral = await self.attach(code, partner_id)
            result = AttachmentResult(AttachmentOutcome.ATTACHED, referral=referral)
        except AlreadyAttachedError as e:
            result = AttachmentResult(
                AttachmentOutcome.ALREADY_ATTACHED,
                referral=await self.get_attachment(partner_id),
                message=e.message,
            )
        except InvalidCodeError as e:
            logger.warning(f"Partner {partner_id} registered with unknown referral code {code!r}")
            result = AttachmentResult(AttachmentOutcome.INVALID_CODE, message=e.message)
        except InactiveReferrerError as e:
            logger.warning(f"Partner {partner_id} used code of inactive agent: {e.message}")
            result = AttachmentResult(AttachmentOutcome.INACTIVE_REFERRER, message=e.message)
        except (ReferralError, SQLAlchemyError) as e:
            logger.exception(f"Attachment of partner {partner_id} failed")
            result = AttachmentResult(AttachmentOutcome.FAILED, message=str(e))

        record_attachment(result.outcome.value)
        return result

    async def list_agent_referrals(
        self,
        agent_id: UUID,
        status: Optional[ReferralStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Referral]:
        """Attachments held by an agent, newest first."""
        stmt = select(Referral).where(Referral.agent_id == agent_id)
        if status:
            stmt = stmt.where(Referral.status == status)
        stmt = stmt.order_by(Referral.created_at.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def deactivate_attachment(self, referral_id: UUID) -> Referral:
        """Stop an attachment from accruing (admin action).

        The partner stays bound to this agent and is never re-attached.
        """
        referral = await self.session.get(Referral, referral_id)
        if not referral:
            raise NotFoundError("Referral not found")

        if referral.status != ReferralStatus.INACTIVE:
            referral.status = ReferralStatus.INACTIVE
            await self.session.flush()
            logger.info(f"Referral {referral_id} deactivated")

        return referral

    def share_link(self, code: str) -> str:
        return f"{settings.referral_share_base_url}?ref={code}"

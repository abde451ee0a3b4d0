"""Database models for the referral system."""

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.database import Base


class ReferralStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Referral(Base):
    """Permanent agent-partner attachment."""

    __tablename__ = "referrals"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    agent_id: Mapped[UUID] = mapped_column(
        ForeignKey("agents.id"), nullable=False, index=True
    )
    partner_id: Mapped[UUID] = mapped_column(
        ForeignKey("partners.id"),
        nullable=False,
        unique=True,  # A partner can only ever be referred once
    )
    code_used: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[ReferralStatus] = mapped_column(
        SQLEnum(ReferralStatus), default=ReferralStatus.ACTIVE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    agent = relationship("Agent", back_populates="referrals")

    def __repr__(self) -> str:
        return f"<Referral agent={self.agent_id} partner={self.partner_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "agent_id": str(self.agent_id),
            "partner_id": str(self.partner_id),
            "code_used": self.code_used,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

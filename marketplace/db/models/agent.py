from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.database import Base

if TYPE_CHECKING:
    from marketplace.db.models.payout import PayoutRecord
    from marketplace.db.models.referral import Referral


class AgentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class Agent(Base):
    """Referral agent. Earns commission on bookings at partners they referred."""

    __tablename__ = "agents"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(unique=True, index=True, nullable=False)
    referral_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[AgentStatus] = mapped_column(
        SQLEnum(AgentStatus), default=AgentStatus.PENDING, nullable=False
    )
    # Percentage, 10.00 means 10%
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("10.00"), nullable=False
    )
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    referrals: Mapped[list["Referral"]] = relationship("Referral", back_populates="agent")
    payouts: Mapped[list["PayoutRecord"]] = relationship("PayoutRecord", back_populates="agent")

    @property
    def is_active(self) -> bool:
        return self.status == AgentStatus.ACTIVE

    @property
    def rate_fraction(self) -> Decimal:
        """Commission rate as a fraction of the booking price."""
        return Decimal(self.commission_rate) / Decimal(100)

    def __repr__(self) -> str:
        return f"<Agent {self.display_name} ({self.id}) status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "referral_code": self.referral_code,
            "display_name": self.display_name,
            "status": self.status.value,
            "commission_rate": str(self.commission_rate),
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "approved_by": self.approved_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

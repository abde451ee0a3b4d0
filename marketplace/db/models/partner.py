"""Partner (host) and property models.

Only the columns the referral engine joins on live here; listing details
belong to the hosted backend.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.database import Base


class PartnerStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class Partner(Base):
    """Property partner (host)."""

    __tablename__ = "partners"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(unique=True, index=True, nullable=False)
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[PartnerStatus] = mapped_column(
        SQLEnum(PartnerStatus), default=PartnerStatus.PENDING, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    properties = relationship("Property", back_populates="partner")

    def __repr__(self) -> str:
        return f"<Partner {self.id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "business_name": self.business_name,
            "status": self.status.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Property(Base):
    """Rental property owned by a partner."""

    __tablename__ = "properties"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    partner_id: Mapped[UUID] = mapped_column(
        ForeignKey("partners.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    partner = relationship("Partner", back_populates="properties")

    def __repr__(self) -> str:
        return f"<Property {self.title} partner={self.partner_id}>"

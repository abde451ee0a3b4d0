from marketplace.db.models.admin import AdminAuditLog
from marketplace.db.models.agent import Agent, AgentStatus
from marketplace.db.models.booking import Booking, BookingStatus
from marketplace.db.models.partner import Partner, PartnerStatus, Property
from marketplace.db.models.payout import PayoutRecord, PayoutStatus
from marketplace.db.models.referral import Referral, ReferralStatus

__all__ = [
    "AdminAuditLog",
    "Agent",
    "AgentStatus",
    "Booking",
    "BookingStatus",
    "Partner",
    "PartnerStatus",
    "Property",
    "PayoutRecord",
    "PayoutStatus",
    "Referral",
    "ReferralStatus",
]

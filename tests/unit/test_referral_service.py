"""Tests for referral attachment."""

from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from marketplace.core.exceptions import (
    AlreadyAttachedError,
    InactiveReferrerError,
    InvalidCodeError,
    NotFoundError,
)
from marketplace.db.models.agent import AgentStatus
from marketplace.db.models.referral import ReferralStatus
from marketplace.services.partner_service import PartnerService
from marketplace.services.referral_service import AttachmentOutcome, ReferralService


class TestAttach:
    """Test direct attachment."""

    @pytest.mark.asyncio
    async def test_attach_to_active_agent(self, test_session, factory, active_agent):
        partner = await factory.partner()
        service = ReferralService(test_session)

        referral = await service.attach("REF123ABC", partner.id)

        assert referral.agent_id == active_agent.id
        assert referral.partner_id == partner.id
        assert referral.code_used == "REF123ABC"
        assert referral.status == ReferralStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_code(self, test_session, factory, active_agent):
        partner = await factory.partner()
        service = ReferralService(test_session)

        with pytest.raises(InvalidCodeError):
            await service.attach("NOPE", partner.id)

        assert await service.get_attachment(partner.id) is None

    @pytest.mark.asyncio
    async def test_code_match_is_case_sensitive(self, test_session, factory, active_agent):
        partner = await factory.partner()
        service = ReferralService(test_session)

        with pytest.raises(InvalidCodeError):
            await service.attach("ref123abc", partner.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [AgentStatus.PENDING, AgentStatus.SUSPENDED, AgentStatus.REJECTED],
    )
    async def test_inactive_referrer(self, test_session, factory, status):
        await factory.agent(code="SLEEPY01", status=status)
        partner = await factory.partner()
        service = ReferralService(test_session)

        with pytest.raises(InactiveReferrerError):
            await service.attach("SLEEPY01", partner.id)

        assert await service.get_attachment(partner.id) is None

    @pytest.mark.asyncio
    async def test_first_attachment_wins(self, test_session, factory, active_agent):
        other = await factory.agent(code="OTHER0001")
        partner = await factory.partner()
        service = ReferralService(test_session)

        await service.attach("REF123ABC", partner.id)
        with pytest.raises(AlreadyAttachedError):
            await service.attach("OTHER0001", partner.id)

        attachment = await service.get_attachment(partner.id)
        assert attachment.agent_id == active_agent.id
        assert attachment.agent_id != other.id

    @pytest.mark.asyncio
    async def test_concurrent_insert_reported_as_already_attached(
        self, test_session, factory, active_agent, monkeypatch
    ):
        """The unique constraint catches a race the pre-check missed."""
        partner = await factory.partner()
        await factory.attach(active_agent, partner)
        service = ReferralService(test_session)

        async def no_attachment(partner_id):
            return None

        monkeypatch.setattr(service, "get_attachment", no_attachment)

        with pytest.raises(AlreadyAttachedError):
            await service.attach("REF123ABC", partner.id)


class TestResolveAttachment:
    """Test the best-effort path used at registration."""

    @pytest.mark.asyncio
    async def test_attached(self, test_session, factory, active_agent):
        partner = await factory.partner()
        result = await ReferralService(test_session).resolve_attachment("REF123ABC", partner.id)

        assert result.attached
        assert result.outcome == AttachmentOutcome.ATTACHED
        assert result.referral.agent_id == active_agent.id

    @pytest.mark.asyncio
    async def test_invalid_code_does_not_raise(self, test_session, factory):
        partner = await factory.partner()
        result = await ReferralService(test_session).resolve_attachment("NOPE", partner.id)

        assert not result.attached
        assert result.outcome == AttachmentOutcome.INVALID_CODE
        assert result.referral is None

    @pytest.mark.asyncio
    async def test_inactive_referrer_does_not_raise(self, test_session, factory):
        await factory.agent(code="SUSPENDED1", status=AgentStatus.SUSPENDED)
        partner = await factory.partner()
        result = await ReferralService(test_session).resolve_attachment("SUSPENDED1", partner.id)

        assert result.outcome == AttachmentOutcome.INACTIVE_REFERRER
        assert result.referral is None

    @pytest.mark.asyncio
    async def test_already_attached_returns_existing(self, test_session, factory, active_agent):
        await factory.agent(code="OTHER0001")
        partner = await factory.partner()
        service = ReferralService(test_session)
        await service.attach("REF123ABC", partner.id)

        result = await service.resolve_attachment("OTHER0001", partner.id)

        assert result.outcome == AttachmentOutcome.ALREADY_ATTACHED
        assert result.referral.agent_id == active_agent.id

    @pytest.mark.asyncio
    async def test_to_dict(self, test_session, factory, active_agent):
        partner = await factory.partner()
        result = await ReferralService(test_session).resolve_attachment("REF123ABC", partner.id)

        data = result.to_dict()
        assert data["outcome"] == "attached"
        assert data["attached"] is True
        assert data["referral"]["agent_id"] == str(active_agent.id)


class TestValidateCode:
    @pytest.mark.asyncio
    async def test_active_code(self, test_session, active_agent):
        assert await ReferralService(test_session).validate_code("REF123ABC")

    @pytest.mark.asyncio
    async def test_unknown_or_inactive(self, test_session, factory):
        await factory.agent(code="PENDING01", status=AgentStatus.PENDING)
        service = ReferralService(test_session)

        assert not await service.validate_code("PENDING01")
        assert not await service.validate_code("MISSING01")


class TestDeactivateAttachment:
    @pytest.mark.asyncio
    async def test_deactivate(self, test_session, factory, active_agent):
        partner = await factory.partner()
        referral = await factory.attach(active_agent, partner)
        service = ReferralService(test_session)

        updated = await service.deactivate_attachment(referral.id)

        assert updated.status == ReferralStatus.INACTIVE
        # Binding survives; the partner cannot be picked up by another agent
        await factory.agent(code="OTHER0001")
        with pytest.raises(AlreadyAttachedError):
            await service.attach("OTHER0001", partner.id)

    @pytest.mark.asyncio
    async def test_unknown_referral(self, test_session):
        with pytest.raises(NotFoundError):
            await ReferralService(test_session).deactivate_attachment(uuid4())


class TestPartnerRegistration:
    """Registration flow that carries the referral code."""

    @pytest.mark.asyncio
    async def test_register_with_code(self, test_session, active_agent):
        registration = await PartnerService(test_session).register_partner(
            uuid4(), referral_code="REF123ABC", business_name="Coast Stays"
        )

        assert registration.created
        assert registration.partner.business_name == "Coast Stays"
        assert registration.attachment.attached
        assert registration.attachment.referral.agent_id == active_agent.id

    @pytest.mark.asyncio
    async def test_register_without_code(self, test_session):
        registration = await PartnerService(test_session).register_partner(uuid4())

        assert registration.created
        assert registration.attachment is None
        assert registration.to_dict()["referral"] is None

    @pytest.mark.asyncio
    async def test_bad_code_still_registers(self, test_session):
        registration = await PartnerService(test_session).register_partner(
            uuid4(), referral_code="BOGUS"
        )

        assert registration.created
        assert registration.partner.id is not None
        assert registration.attachment.outcome == AttachmentOutcome.INVALID_CODE

    @pytest.mark.asyncio
    async def test_second_registration_keeps_first_agent(self, test_session, factory, active_agent):
        await factory.agent(code="SECOND001")
        service = PartnerService(test_session)
        user_id = uuid4()

        first = await service.register_partner(user_id, referral_code="REF123ABC")
        second = await service.register_partner(user_id, referral_code="SECOND001")

        assert not second.created
        assert second.partner.id == first.partner.id
        assert second.attachment.outcome == AttachmentOutcome.ALREADY_ATTACHED
        assert second.attachment.referral.agent_id == active_agent.id

    @pytest.mark.asyncio
    async def test_inactive_referrer_registers_unattached(self, test_session, factory):
        await factory.agent(code="SUSPENDED1", status=AgentStatus.SUSPENDED)
        service = PartnerService(test_session)

        registration = await service.register_partner(uuid4(), referral_code="SUSPENDED1")

        assert registration.created
        assert not registration.attachment.attached
        assert await service.referrals.get_attachment(registration.partner.id) is None

    @pytest.mark.asyncio
    async def test_failed_code_lookup_keeps_partner(self, test_session, monkeypatch, active_agent):
        service = PartnerService(test_session)
        user_id = uuid4()

        async def timed_out(code):
            raise OperationalError(
                "SELECT agents", {}, Exception("canceling statement due to statement timeout")
            )

        monkeypatch.setattr(service.referrals, "get_agent_by_code", timed_out)

        registration = await service.register_partner(user_id, referral_code="REF123ABC")
        await test_session.commit()

        assert registration.created
        assert registration.attachment.outcome == AttachmentOutcome.FAILED
        stored = await PartnerService(test_session).get_partner_by_user(user_id)
        assert stored is not None
        assert stored.id == registration.partner.id

"""Tests for referral code generation."""

import re
from unittest.mock import patch

import pytest

from marketplace.core.exceptions import MarketplaceError
from marketplace.services.referral_service import (
    ReferralService,
    generate_referral_code,
    to_base36,
)


class TestGenerateReferralCode:
    def test_format(self):
        code = generate_referral_code()
        assert re.fullmatch(r"[A-Z0-9]+", code)
        assert 10 <= len(code) <= 14

    def test_unique_within_same_millisecond(self):
        with patch("marketplace.services.referral_service.time.time", return_value=1_700_000_000.0):
            codes = {generate_referral_code(random_length=8) for _ in range(1000)}
        assert len(codes) == 1000

    def test_custom_suffix_length(self):
        short = generate_referral_code(random_length=2)
        long = generate_referral_code(random_length=6)
        assert len(long) - len(short) == 4


class TestBase36:
    @pytest.mark.parametrize(
        "value,expected",
        [(0, "0"), (9, "9"), (10, "A"), (35, "Z"), (36, "10"), (1295, "ZZ")],
    )
    def test_values(self, value, expected):
        assert to_base36(value) == expected


class TestIssueCode:
    @pytest.mark.asyncio
    async def test_issues_unused_code(self, test_session):
        service = ReferralService(test_session)
        code = await service.issue_code()
        assert not await service.code_exists(code)

    @pytest.mark.asyncio
    async def test_regenerates_on_collision(self, test_session, factory):
        await factory.agent(code="TAKEN0000001")
        service = ReferralService(test_session)

        codes = iter(["TAKEN0000001", "FRESH0000001"])
        with patch(
            "marketplace.services.referral_service.generate_referral_code",
            side_effect=lambda: next(codes),
        ):
            code = await service.issue_code()

        assert code == "FRESH0000001"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, test_session, factory):
        await factory.agent(code="TAKEN0000001")
        service = ReferralService(test_session)

        with patch(
            "marketplace.services.referral_service.generate_referral_code",
            return_value="TAKEN0000001",
        ):
            with pytest.raises(MarketplaceError):
                await service.issue_code()

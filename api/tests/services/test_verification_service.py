"""Tests for public certificate verification."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from services.verification_service import (
    CertificateNotFoundError,
    InvalidVerificationCodeError,
    verify_by_code,
    verify_by_code_and_name,
)
from tests.factories import CertificateFactory, TemplateFactory, create_async

pytestmark = pytest.mark.integration


@pytest.fixture
async def certificate(db_session: AsyncSession):
    template = await create_async(TemplateFactory, db_session)
    return await create_async(
        CertificateFactory,
        db_session,
        template_id=template.id,
        verification_code="CERT-000042",
        recipient_name="Ada Lovelace",
        recipient_email="ada@example.com",
    )


class TestVerifyByCode:
    async def test_first_lookup_marks_verified(self, db_session, certificate):
        view = await verify_by_code(db_session, "CERT-000042")

        assert view.recipient_name == "Ada Lovelace"
        assert view.recipient_email == "ada@example.com"
        assert view.verified_at is not None
        assert certificate.is_verified is True

    async def test_repeat_lookup_keeps_first_timestamp(self, db_session, certificate):
        first = await verify_by_code(db_session, "CERT-000042")
        second = await verify_by_code(db_session, "CERT-000042")

        assert second.verified_at == first.verified_at

    async def test_view_is_redacted(self, db_session, certificate):
        view = await verify_by_code(db_session, "CERT-000042")

        assert not hasattr(view, "verification_code")
        assert not hasattr(view, "metadata")
        assert view.file_url == certificate.file_url

    async def test_surrounding_whitespace_is_ignored(self, db_session, certificate):
        view = await verify_by_code(db_session, "  CERT-000042 ")
        assert view.recipient_name == "Ada Lovelace"

    @pytest.mark.parametrize("code", ["", "   ", "ABC", "CERT-"])
    async def test_short_code_is_invalid(self, db_session, code):
        with pytest.raises(InvalidVerificationCodeError):
            await verify_by_code(db_session, code)

    async def test_unknown_code(self, db_session, certificate):
        with pytest.raises(CertificateNotFoundError):
            await verify_by_code(db_session, "CERT-999999")


class TestVerifyByCodeAndName:
    async def test_matching_name_ignores_case_and_whitespace(
        self, db_session, certificate
    ):
        view = await verify_by_code_and_name(
            db_session, "CERT-000042", "  ada LOVELACE "
        )
        assert view.verified_at is not None

    async def test_wrong_name_is_not_found_and_not_verified(
        self, db_session, certificate
    ):
        with pytest.raises(CertificateNotFoundError):
            await verify_by_code_and_name(db_session, "CERT-000042", "Grace Hopper")

        assert certificate.is_verified is False
        assert certificate.verified_at is None

"""Tests for certificate generation, bulk generation and download lookup."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import clear_settings_cache
from core.storage import FileStorage
from models import Certificate
from rendering.assembler import RenderError
from schemas import BulkGenerateRequest, GenerateRequest
from services.certificates_service import (
    deliver_certificate,
    generate_bulk,
    generate_certificate,
    get_download_path,
)
from services.recipients_service import RecipientNotAllowedError
from services.templates_service import TemplateNotFoundError
from services.verification_service import CertificateNotFoundError
from tests.factories import (
    AllowedRecipientFactory,
    CertificateFactory,
    TemplateFactory,
    create_async,
)

pytestmark = pytest.mark.integration


async def _certificate_count(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(Certificate))
    return result.scalar_one()


def _files(storage: FileStorage, folder: str) -> list[str]:
    return sorted(p.name for p in (storage.root / folder).iterdir())


@pytest.fixture
async def template(db_session: AsyncSession):
    return await create_async(TemplateFactory, db_session)


@pytest.fixture
async def recipient(db_session: AsyncSession):
    return await create_async(
        AllowedRecipientFactory,
        db_session,
        name="Ada Lovelace",
        email="ada@example.com",
        event="Analytical Engines 101",
    )


class TestGenerateCertificate:
    async def test_generates_sequential_code_and_files(
        self, db_session, assembler, storage, template, recipient
    ):
        request = GenerateRequest(
            name="Ada Lovelace",
            email="ada@example.com",
            template_id=template.id,
        )

        cert = await generate_certificate(db_session, assembler, storage, request)

        assert cert.verification_code == f"CERT-{cert.id:06d}"
        assert cert.is_verified is False
        assert cert.file_url == storage.public_url(cert.file_path)
        assert storage.exists(cert.file_path)
        assert len(_files(storage, "qr")) == 1

        (call,) = assembler.calls
        assert call["values"]["NAME"] == "Ada Lovelace"
        assert call["values"]["ID"] == cert.verification_code
        assert call["qr_png"].startswith(b"\x89PNG")

    async def test_first_certificate_gets_first_code(
        self, db_session, assembler, storage, template, recipient
    ):
        request = GenerateRequest(
            name="Ada Lovelace", email="ada@example.com", template_id=template.id
        )
        cert = await generate_certificate(db_session, assembler, storage, request)
        assert cert.verification_code == "CERT-000001"

    async def test_uuid_codes_when_not_sequential(
        self, db_session, assembler, storage, template, recipient, monkeypatch
    ):
        monkeypatch.setenv("SEQUENTIAL_CODES", "false")
        clear_settings_cache()
        request = GenerateRequest(
            name="Ada Lovelace", email="ada@example.com", template_id=template.id
        )

        cert = await generate_certificate(db_session, assembler, storage, request)

        assert len(cert.verification_code) == 32
        assert not cert.verification_code.startswith("CERT-")

    async def test_event_falls_back_to_allow_list_entry(
        self, db_session, assembler, storage, template, recipient
    ):
        request = GenerateRequest(
            name="Ada Lovelace", email="ada@example.com", template_id=template.id
        )
        cert = await generate_certificate(db_session, assembler, storage, request)

        assert cert.event == "Analytical Engines 101"
        assert assembler.calls[0]["values"]["EVENT"] == "Analytical Engines 101"

    async def test_request_event_and_metadata_win(
        self, db_session, assembler, storage, template, recipient
    ):
        request = GenerateRequest(
            name="Ada Lovelace",
            email="ada@example.com",
            template_id=template.id,
            event="Gala",
            metadata={"score": 98, "grade": "A"},
        )
        cert = await generate_certificate(db_session, assembler, storage, request)

        assert cert.event == "Gala"
        assert cert.metadata_ == {"score": "98", "grade": "A"}
        values = assembler.calls[0]["values"]
        assert values["SCORE"] == "98"
        assert values["GRADE"] == "A"

    async def test_refuses_email_not_on_allow_list(
        self, db_session, assembler, storage, template
    ):
        request = GenerateRequest(
            name="Mallory", email="mallory@example.com", template_id=template.id
        )

        with pytest.raises(RecipientNotAllowedError):
            await generate_certificate(db_session, assembler, storage, request)

        assert assembler.calls == []
        assert await _certificate_count(db_session) == 0
        assert _files(storage, "certificates") == []

    async def test_allow_list_match_ignores_case(
        self, db_session, assembler, storage, template, recipient
    ):
        request = GenerateRequest(
            name="Ada Lovelace", email="ADA@Example.COM", template_id=template.id
        )
        cert = await generate_certificate(db_session, assembler, storage, request)
        assert cert.recipient_email == "ada@example.com"

    async def test_unknown_template_fails_before_rendering(
        self, db_session, assembler, storage, recipient
    ):
        request = GenerateRequest(
            name="Ada Lovelace", email="ada@example.com", template_id=999
        )

        with pytest.raises(TemplateNotFoundError):
            await generate_certificate(db_session, assembler, storage, request)

        assert assembler.calls == []
        assert await _certificate_count(db_session) == 0

    async def test_render_failure_persists_nothing(
        self, session_maker, assembler, storage, recipient, template, db_session
    ):
        await db_session.commit()
        assembler.fail_for.add("Ada Lovelace")
        request = GenerateRequest(
            name="Ada Lovelace", email="ada@example.com", template_id=template.id
        )

        async with session_maker() as db:
            with pytest.raises(RenderError):
                await generate_certificate(db, assembler, storage, request)
            await db.rollback()

        async with session_maker() as db:
            assert await _certificate_count(db) == 0
        assert _files(storage, "qr") == []
        assert _files(storage, "certificates") == []

    async def test_generation_itself_sends_no_mail(
        self, db_session, assembler, storage, template, recipient
    ):
        request = GenerateRequest(
            name="Ada Lovelace",
            email="ada@example.com",
            template_id=template.id,
            send_email=True,
        )

        with patch("services.certificates_service.MailService") as mail_cls:
            await generate_certificate(db_session, assembler, storage, request)

        mail_cls.assert_not_called()


class TestDeliverCertificate:
    async def test_sends_stored_document(
        self, db_session, assembler, storage, template, recipient
    ):
        mailer = AsyncMock()
        request = GenerateRequest(
            name="Ada Lovelace", email="ada@example.com", template_id=template.id
        )
        cert = await generate_certificate(db_session, assembler, storage, request)
        await db_session.commit()

        await deliver_certificate(mailer, storage, cert)

        mailer.send_certificate.assert_awaited_once_with(
            "Ada Lovelace",
            "ada@example.com",
            storage.path_for(cert.file_path),
            cert.verification_code,
        )

    async def test_mail_failure_does_not_undo_generation(
        self, db_session, assembler, storage, template, recipient
    ):
        mailer = AsyncMock()
        mailer.send_certificate.return_value = False
        request = GenerateRequest(
            name="Ada Lovelace", email="ada@example.com", template_id=template.id
        )
        cert = await generate_certificate(db_session, assembler, storage, request)
        await db_session.commit()

        assert await deliver_certificate(mailer, storage, cert) is False
        assert await _certificate_count(db_session) == 1
        assert storage.exists(cert.file_path)


class TestGenerateBulk:
    @pytest.fixture
    async def committed(self, db_session, template):
        for name, email in [
            ("Ada Lovelace", "ada@example.com"),
            ("Grace Hopper", "grace@example.com"),
            ("Alan Turing", "alan@example.com"),
        ]:
            await create_async(
                AllowedRecipientFactory, db_session, name=name, email=email
            )
        await db_session.commit()
        return template

    def _request(self, template_id: int, recipients: list) -> BulkGenerateRequest:
        return BulkGenerateRequest(recipients=recipients, template_id=template_id)

    async def test_all_succeed_in_order(
        self, session_maker, assembler, storage, committed
    ):
        request = self._request(
            committed.id,
            [
                {"name": "Ada Lovelace", "email": "ada@example.com"},
                {"name": "Grace Hopper", "email": "grace@example.com"},
                {"name": "Alan Turing", "email": "alan@example.com"},
            ],
        )

        outcome = await generate_bulk(session_maker, assembler, storage, request)

        assert outcome.errors == []
        assert [r.index for r in outcome.results] == [0, 1, 2]
        codes = [r.certificate.verification_code for r in outcome.results]
        assert len(set(codes)) == 3

    async def test_one_failure_does_not_stop_the_rest(
        self, session_maker, assembler, storage, committed
    ):
        assembler.fail_for.add("Grace Hopper")
        request = self._request(
            committed.id,
            [
                {"name": "Ada Lovelace", "email": "ada@example.com"},
                {"name": "Grace Hopper", "email": "grace@example.com"},
                {"name": "Alan Turing", "email": "alan@example.com"},
            ],
        )

        outcome = await generate_bulk(session_maker, assembler, storage, request)

        assert [r.index for r in outcome.results] == [0, 2]
        (failure,) = outcome.errors
        assert failure.index == 1
        assert failure.email == "grace@example.com"
        assert failure.error == "Failed to render template"

        async with session_maker() as db:
            assert await _certificate_count(db) == 2

    async def test_records_allow_list_and_validation_failures(
        self, session_maker, assembler, storage, committed
    ):
        request = self._request(
            committed.id,
            [
                {"name": "Mallory", "email": "mallory@example.com"},
                {"name": "", "email": "ada@example.com"},
                {"name": "Alan Turing", "email": "alan@example.com"},
            ],
        )

        outcome = await generate_bulk(session_maker, assembler, storage, request)

        assert [r.index for r in outcome.results] == [2]
        errors = {e.index: e.error for e in outcome.errors}
        assert errors[0] == "Recipient not in allowed list"
        assert errors[1].startswith("name:")

    async def test_mails_each_committed_recipient(
        self, session_maker, assembler, storage, committed
    ):
        mailer = AsyncMock()
        assembler.fail_for.add("Grace Hopper")
        request = BulkGenerateRequest(
            recipients=[
                {"name": "Ada Lovelace", "email": "ada@example.com"},
                {"name": "Grace Hopper", "email": "grace@example.com"},
            ],
            template_id=committed.id,
            send_email=True,
        )

        outcome = await generate_bulk(
            session_maker, assembler, storage, request, mailer=mailer
        )

        (result,) = outcome.results
        mailer.send_certificate.assert_awaited_once()
        args = mailer.send_certificate.await_args.args
        assert args[1] == "ada@example.com"
        assert args[3] == result.certificate.verification_code

    async def test_failed_commit_sends_no_mail(
        self, session_maker, assembler, storage, committed
    ):
        mailer = AsyncMock()
        request = BulkGenerateRequest(
            recipients=[{"name": "Ada Lovelace", "email": "ada@example.com"}],
            template_id=committed.id,
            send_email=True,
        )

        with patch.object(
            AsyncSession, "commit", side_effect=OperationalError("COMMIT", {}, None)
        ):
            outcome = await generate_bulk(
                session_maker, assembler, storage, request, mailer=mailer
            )

        assert outcome.results == []
        assert outcome.errors[0].error == "Internal server error"
        mailer.send_certificate.assert_not_awaited()
        async with session_maker() as db:
            assert await _certificate_count(db) == 0

    async def test_unknown_template_fails_every_item(
        self, session_maker, assembler, storage, committed
    ):
        request = self._request(
            999, [{"name": "Ada Lovelace", "email": "ada@example.com"}]
        )

        outcome = await generate_bulk(session_maker, assembler, storage, request)

        assert outcome.results == []
        assert outcome.errors[0].error == "Template not found"
        assert assembler.calls == []


class TestGetDownloadPath:
    async def test_returns_stored_file(self, db_session, storage, template):
        cert = await create_async(
            CertificateFactory, db_session, template_id=template.id
        )
        storage.write_bytes(cert.file_path, b"%PDF-1.4")

        found, path = await get_download_path(
            db_session, storage, cert.verification_code
        )

        assert found.id == cert.id
        assert path.read_bytes() == b"%PDF-1.4"

    async def test_unknown_code(self, db_session, storage):
        with pytest.raises(CertificateNotFoundError):
            await get_download_path(db_session, storage, "CERT-999999")

    async def test_missing_file(self, db_session, storage, template):
        cert = await create_async(
            CertificateFactory, db_session, template_id=template.id
        )

        with pytest.raises(CertificateNotFoundError):
            await get_download_path(db_session, storage, cert.verification_code)

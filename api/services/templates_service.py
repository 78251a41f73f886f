"""Template management business logic.

This module handles:
- Upload validation (SVG, HTML and PDF only)
- Placeholder discovery at upload time
- Rename and guarded deletion (refused while certificates reference it)

Vector templates keep their markup in the database; PDF templates are stored
under the storage root and only referenced from the row.
"""

import logging
from collections.abc import Sequence
from pathlib import PurePath

from sqlalchemy.ext.asyncio import AsyncSession

from core.storage import TEMPLATES_DIR, FileStorage
from models import Template, TemplateKind
from rendering.assembler import TemplateSource
from rendering.pdf_tags import extract_pdf_placeholders
from rendering.placeholders import extract_placeholders
from repositories.certificate_repository import CertificateRepository
from repositories.template_repository import TemplateRepository

logger = logging.getLogger(__name__)

_KIND_BY_SUFFIX = {
    ".svg": TemplateKind.SVG,
    ".html": TemplateKind.HTML,
    ".htm": TemplateKind.HTML,
    ".pdf": TemplateKind.PDF,
}

_PDF_MAGIC = b"%PDF-"


class TemplateNotFoundError(Exception):
    """Raised when a template id does not exist."""

    def __init__(self, template_id: int):
        self.template_id = template_id
        super().__init__("Template not found")


class TemplateInUseError(Exception):
    """Raised when deleting a template that certificates still reference."""

    def __init__(self, template_id: int):
        self.template_id = template_id
        super().__init__("Template is in use and cannot be deleted")


class TemplateValidationError(Exception):
    """Raised for uploads that cannot become a template."""


def kind_for_filename(filename: str) -> TemplateKind:
    suffix = PurePath(filename).suffix.lower()
    kind = _KIND_BY_SUFFIX.get(suffix)
    if kind is None:
        raise TemplateValidationError(
            "Unsupported file type. Only SVG, HTML, and PDF files are allowed."
        )
    return kind


def _decode_markup(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise TemplateValidationError("Template file must be UTF-8 text") from e


def _pdf_placeholders(content: bytes) -> list[str]:
    if not content.startswith(_PDF_MAGIC):
        raise TemplateValidationError("Uploaded file is not a PDF document")
    try:
        return extract_pdf_placeholders(content)
    except (RuntimeError, ValueError) as e:
        raise TemplateValidationError("Uploaded PDF could not be read") from e


def template_source(template: Template, storage: FileStorage) -> TemplateSource:
    """What the assembler needs to render ``template``."""
    if template.kind is TemplateKind.PDF:
        if not template.file_path:
            raise TemplateValidationError(f"Template {template.id} has no stored file")
        return TemplateSource(
            kind=template.kind, path=storage.path_for(template.file_path)
        )
    return TemplateSource(kind=template.kind, body=template.body or "")


async def upload_template(
    db: AsyncSession,
    storage: FileStorage,
    *,
    name: str,
    filename: str,
    content: bytes,
    created_by: str | None = None,
) -> Template:
    """Validate an uploaded file and store it as a template.

    Raises:
        TemplateValidationError: Missing name, empty file, unsupported type or
            unreadable content.
    """
    name = " ".join(name.split())
    if not name:
        raise TemplateValidationError("Template name is required")
    if not content:
        raise TemplateValidationError("No file uploaded")

    kind = kind_for_filename(filename)
    repo = TemplateRepository(db)

    if kind.is_vector:
        body = _decode_markup(content)
        template = await repo.create(
            name=name,
            kind=kind,
            body=body,
            placeholders=extract_placeholders(body),
            created_by=created_by,
        )
    else:
        placeholders = _pdf_placeholders(content)
        key = storage.new_key(TEMPLATES_DIR, ".pdf")
        storage.write_bytes(key, content)
        template = await repo.create(
            name=name,
            kind=kind,
            file_path=key,
            file_url=storage.public_url(key),
            placeholders=placeholders,
            created_by=created_by,
        )

    logger.info(
        "template.uploaded",
        extra={
            "template_id": template.id,
            "kind": kind.value,
            "placeholders": len(template.placeholders),
        },
    )
    return template


async def list_templates(db: AsyncSession) -> Sequence[Template]:
    return await TemplateRepository(db).list_all()


async def get_template(db: AsyncSession, template_id: int) -> Template:
    """Raises TemplateNotFoundError if the id is unknown."""
    template = await TemplateRepository(db).get_by_id(template_id)
    if template is None:
        raise TemplateNotFoundError(template_id)
    return template


async def rename_template(db: AsyncSession, template_id: int, name: str) -> Template:
    template = await get_template(db, template_id)
    return await TemplateRepository(db).rename(template, name)


async def delete_template(db: AsyncSession, template_id: int) -> str | None:
    """Delete a template nobody references.

    Returns the storage key of its uploaded PDF, if any. The file is left in
    place: remove it only after the deletion has been committed, or a failed
    commit leaves a template whose file is gone.

    Raises:
        TemplateNotFoundError: If the id is unknown.
        TemplateInUseError: If any certificate was issued from it.
    """
    template = await get_template(db, template_id)

    if await CertificateRepository(db).exists_for_template(template_id):
        raise TemplateInUseError(template_id)

    file_path = template.file_path
    await TemplateRepository(db).delete(template)

    logger.info("template.deleted", extra={"template_id": template_id})
    return file_path

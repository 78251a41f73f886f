"""SQLAlchemy models for certificate issuing and verification."""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class TemplateKind(str, PyEnum):
    """How a template is stored and rendered.

    SVG and HTML are vector markup kept in ``Template.body``; PDF is a
    paginated binary kept on disk and referenced by ``Template.file_path``.
    """

    SVG = "svg"
    HTML = "html"
    PDF = "pdf"

    @property
    def is_vector(self) -> bool:
        return self is not TemplateKind.PDF


class Template(Base):
    """An uploaded certificate template with its discovered placeholders."""

    __tablename__ = "templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[TemplateKind] = mapped_column(
        Enum(
            TemplateKind,
            name="template_kind",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    file_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    placeholders: Mapped[list[str]] = mapped_column(JSONType, default=list)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )

    certificates: Mapped[list["Certificate"]] = relationship(
        back_populates="template",
        passive_deletes="all",
    )


class AllowedRecipient(Base):
    """Allow-list entry; generation is refused for emails not listed here."""

    __tablename__ = "allowed_recipients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )


class Certificate(Base):
    """An issued certificate and its verification state."""

    __tablename__ = "certificates"
    __table_args__ = (
        Index("ix_certificates_template", "template_id"),
        Index("ix_certificates_is_verified", "is_verified"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    verification_code: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )
    recipient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    template_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    event: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_url: Mapped[str] = mapped_column(String(500), nullable=False)
    qr_code_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    metadata_: Mapped[dict[str, str]] = mapped_column(
        "metadata", JSONType, default=dict
    )
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    template: Mapped["Template"] = relationship(back_populates="certificates")

"""Pydantic schemas for API request/response validation."""

import re
from datetime import datetime
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from models import TemplateKind

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _clean_name(v: str) -> str:
    cleaned = " ".join(v.strip().split())
    if not cleaned:
        raise ValueError("Name must not be blank")
    return cleaned


def _clean_email(v: str) -> str:
    cleaned = v.strip().lower()
    if not _EMAIL_RE.match(cleaned):
        raise ValueError("Invalid email address")
    return cleaned


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


# ============ Templates ============


class TemplateResponse(BaseModel):
    """An uploaded template."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: TemplateKind
    body: str | None = None
    placeholders: list[str]
    file_url: str | None = None
    created_by: str | None = None
    created_at: datetime


class TemplateRenameRequest(BaseModel):
    """Only the name of a template can change after upload."""

    name: str = Field(min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)


class MessageResponse(BaseModel):
    message: str


# ============ Allow-list ============


class RecipientCreateRequest(BaseModel):
    """Request to add a recipient to the allow-list."""

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=255)
    event: str | None = Field(default=None, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _clean_email(v)


class RecipientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    event: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    created_at: datetime


# ============ Generation ============


class GenerateRequest(BaseModel):
    """Request to generate one certificate.

    Accepts the camelCase keys used by the admin frontend as well.
    """

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=255)
    template_id: int = Field(
        gt=0, validation_alias=AliasChoices("template_id", "templateId")
    )
    event: str | None = Field(default=None, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)
    send_email: bool = Field(
        default=False, validation_alias=AliasChoices("send_email", "sendEmail")
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _clean_email(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def validate_metadata(cls, v: Any) -> Any:
        return {} if v is None else v


class BulkGenerateRequest(BaseModel):
    """Request to generate certificates for many recipients.

    Recipients are validated one by one so a bad entry only fails itself.
    """

    recipients: list[dict[str, Any]] = Field(min_length=1)
    template_id: int = Field(
        gt=0, validation_alias=AliasChoices("template_id", "templateId")
    )
    send_email: bool = Field(
        default=False, validation_alias=AliasChoices("send_email", "sendEmail")
    )


class CertificateResponse(BaseModel):
    """The full certificate record (admin view)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    verification_code: str
    recipient_name: str
    recipient_email: str
    template_id: int
    event: str | None = None
    file_url: str
    qr_code_url: str | None = None
    metadata: dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    issued_at: datetime
    verified_at: datetime | None = None
    is_verified: bool


class GenerateResponse(BaseModel):
    success: bool = True
    certificate: CertificateResponse
    file_url: str


class BulkItemResult(BaseModel):
    index: int
    name: str | None = None
    email: str | None = None
    certificate: CertificateResponse


class BulkItemError(BaseModel):
    index: int
    name: str | None = None
    email: str | None = None
    error: str


class BulkGenerateResponse(BaseModel):
    success: bool = True
    results: list[BulkItemResult]
    errors: list[BulkItemError]


# ============ Verification ============


class PublicCertificateView(BaseModel):
    """Redacted certificate returned by public verification."""

    model_config = ConfigDict(from_attributes=True)

    recipient_name: str
    recipient_email: str
    issued_at: datetime
    verified_at: datetime | None = None
    file_url: str


class VerifyResponse(BaseModel):
    valid: bool
    certificate: PublicCertificateView | None = None
    error: str | None = None


# ============ Stats ============


class StatsResponse(BaseModel):
    templates: int
    certificates: int
    verified: int

"""Allow-list business logic.

Only emails on the allow-list can receive certificates. Emails are normalized
to lowercase by the schema layer, so the list is case-insensitive.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from models import AllowedRecipient
from repositories.recipient_repository import (
    DuplicateRecipientError,
    RecipientRepository,
)

logger = logging.getLogger(__name__)


class RecipientAlreadyExistsError(Exception):
    """Raised when the email is already on the allow-list."""

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email already exists")


class RecipientNotAllowedError(Exception):
    """Raised when generating for an email that is not on the allow-list."""

    def __init__(self, email: str):
        self.email = email
        super().__init__("Recipient not in allowed list")


async def list_recipients(db: AsyncSession) -> Sequence[AllowedRecipient]:
    return await RecipientRepository(db).list_all()


async def add_recipient(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    event: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> AllowedRecipient:
    """Add an email to the allow-list.

    Raises:
        RecipientAlreadyExistsError: If the email is already listed.
    """
    try:
        recipient = await RecipientRepository(db).create(
            name=name, email=email, event=event, metadata=metadata
        )
    except DuplicateRecipientError as e:
        raise RecipientAlreadyExistsError(email) from e

    logger.info("recipient.added", extra={"recipient_id": recipient.id})
    return recipient


async def require_allowed(db: AsyncSession, email: str) -> AllowedRecipient:
    """Return the allow-list entry for ``email`` or refuse.

    Raises:
        RecipientNotAllowedError: If the email is not listed.
    """
    recipient = await RecipientRepository(db).get_by_email(email)
    if recipient is None:
        logger.info("generation.refused", extra={"reason": "not_allowed"})
        raise RecipientNotAllowedError(email)
    return recipient

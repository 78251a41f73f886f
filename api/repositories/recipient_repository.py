"""Allow-list repository for database operations."""

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import AllowedRecipient


class DuplicateRecipientError(Exception):
    """Raised when an allow-list entry for the email already exists."""


class RecipientRepository:
    """Repository for AllowedRecipient database operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_email(self, email: str) -> AllowedRecipient | None:
        """Get an allow-list entry by email.

        Expects email to be pre-normalized (lowercase) by the schema layer.
        """
        result = await self.db.execute(
            select(AllowedRecipient).where(AllowedRecipient.email == email)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> Sequence[AllowedRecipient]:
        """All allow-list entries, newest first."""
        result = await self.db.execute(
            select(AllowedRecipient).order_by(
                AllowedRecipient.created_at.desc(), AllowedRecipient.id.desc()
            )
        )
        return result.scalars().all()

    async def create(
        self,
        *,
        name: str,
        email: str,
        event: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AllowedRecipient:
        """Add an allow-list entry. Flushes but does NOT commit.

        Runs in a savepoint so a duplicate leaves the outer transaction usable.

        Raises:
            DuplicateRecipientError: If the email is already on the list.
        """
        recipient = AllowedRecipient(
            name=name,
            email=email,
            event=event,
            metadata_=dict(metadata or {}),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(recipient)
                await self.db.flush()
        except IntegrityError as e:
            raise DuplicateRecipientError(email) from e
        return recipient

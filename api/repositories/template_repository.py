"""Repository for template operations."""

from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Template, TemplateKind


class TemplateRepository:
    """Repository for Template database operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_id(self, template_id: int) -> Template | None:
        return await self.db.get(Template, template_id)

    async def list_all(self) -> Sequence[Template]:
        """All templates, newest first."""
        result = await self.db.execute(
            select(Template).order_by(Template.created_at.desc(), Template.id.desc())
        )
        return result.scalars().all()

    async def create(
        self,
        *,
        name: str,
        kind: TemplateKind,
        placeholders: list[str],
        body: str | None = None,
        file_path: str | None = None,
        file_url: str | None = None,
        created_by: str | None = None,
    ) -> Template:
        """Create a template. Flushes but does NOT commit."""
        template = Template(
            name=name,
            kind=kind,
            body=body,
            file_path=file_path,
            file_url=file_url,
            placeholders=placeholders,
            created_by=created_by,
        )
        self.db.add(template)
        await self.db.flush()
        return template

    async def rename(self, template: Template, name: str) -> Template:
        template.name = name
        await self.db.flush()
        return template

    async def delete(self, template: Template) -> None:
        await self.db.delete(template)
        await self.db.flush()

    async def count(self) -> int:
        result = await self.db.execute(select(func.count(Template.id)))
        return result.scalar_one()

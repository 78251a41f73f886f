"""Template management endpoints (admin only)."""

from typing import Annotated

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from core.auth import AdminUser
from core.database import DbSession
from core.storage import Storage
from schemas import MessageResponse, TemplateRenameRequest, TemplateResponse
from services.templates_service import (
    TemplateInUseError,
    TemplateNotFoundError,
    TemplateValidationError,
    delete_template,
    get_template,
    list_templates,
    rename_template,
    upload_template,
)

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("", response_model=list[TemplateResponse])
async def list_templates_endpoint(
    admin: AdminUser, db: DbSession
) -> list[TemplateResponse]:
    templates = await list_templates(db)
    return [TemplateResponse.model_validate(t) for t in templates]


@router.post(
    "/upload",
    response_model=TemplateResponse,
    status_code=201,
    responses={400: {"description": "Missing name or unsupported file"}},
)
async def upload_template_endpoint(
    admin: AdminUser,
    db: DbSession,
    storage: Storage,
    template: Annotated[UploadFile | None, File()] = None,
    name: Annotated[str, Form()] = "",
) -> TemplateResponse:
    """Upload an SVG, HTML or PDF template; placeholders are discovered."""
    if template is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    content = await template.read()
    try:
        created = await upload_template(
            db,
            storage,
            name=name,
            filename=template.filename or "",
            content=content,
            created_by=admin,
        )
    except TemplateValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return TemplateResponse.model_validate(created)


@router.get(
    "/{template_id}",
    response_model=TemplateResponse,
    responses={404: {"description": "Template not found"}},
)
async def get_template_endpoint(
    template_id: int, admin: AdminUser, db: DbSession
) -> TemplateResponse:
    try:
        template = await get_template(db, template_id)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return TemplateResponse.model_validate(template)


@router.put(
    "/{template_id}",
    response_model=TemplateResponse,
    responses={404: {"description": "Template not found"}},
)
async def rename_template_endpoint(
    template_id: int,
    body: TemplateRenameRequest,
    admin: AdminUser,
    db: DbSession,
) -> TemplateResponse:
    """Rename a template. Content is immutable after upload."""
    try:
        template = await rename_template(db, template_id, body.name)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return TemplateResponse.model_validate(template)


@router.delete(
    "/{template_id}",
    response_model=MessageResponse,
    responses={
        404: {"description": "Template not found"},
        409: {"description": "Template is in use"},
    },
)
async def delete_template_endpoint(
    template_id: int,
    admin: AdminUser,
    db: DbSession,
    storage: Storage,
) -> MessageResponse:
    """Delete a template. Refused while any certificate references it."""
    try:
        file_path = await delete_template(db, template_id)
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TemplateInUseError as e:
        raise HTTPException(status_code=409, detail=str(e))

    await db.commit()
    if file_path:
        storage.delete(file_path)
    return MessageResponse(message="Template deleted successfully")

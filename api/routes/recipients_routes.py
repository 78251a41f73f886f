"""Allow-list endpoints (admin only)."""

from fastapi import APIRouter, HTTPException

from core.auth import AdminUser
from core.database import DbSession
from schemas import RecipientCreateRequest, RecipientResponse
from services.recipients_service import (
    RecipientAlreadyExistsError,
    add_recipient,
    list_recipients,
)

router = APIRouter(prefix="/api/allowed-recipients", tags=["recipients"])


@router.get("", response_model=list[RecipientResponse])
async def list_recipients_endpoint(
    admin: AdminUser, db: DbSession
) -> list[RecipientResponse]:
    recipients = await list_recipients(db)
    return [RecipientResponse.model_validate(r) for r in recipients]


@router.post(
    "",
    response_model=RecipientResponse,
    status_code=201,
    responses={409: {"description": "Email already exists"}},
)
async def add_recipient_endpoint(
    body: RecipientCreateRequest, admin: AdminUser, db: DbSession
) -> RecipientResponse:
    try:
        recipient = await add_recipient(
            db,
            name=body.name,
            email=body.email,
            event=body.event,
            metadata=body.metadata,
        )
    except RecipientAlreadyExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RecipientResponse.model_validate(recipient)

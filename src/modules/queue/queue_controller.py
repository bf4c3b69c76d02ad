# src/modules/queue/queue_controller.py
"""Queue controller with API routes."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import RECEPTION_ROLES, STAFF_ROLES, require_roles
from src.common.database.database import get_db_session
from src.common.exceptions import QueueEngineError
from src.common.utils.global_functions import to_http_exception
from src.models.models import User

from . import queue_service as service
from .schemas import CallNextRequest, CheckInRequest, QueueActionResponse, QueueEntryRecord

router = APIRouter(prefix="/queue", tags=["Queue"])


@router.post("/check-in", response_model=QueueActionResponse, status_code=201)
async def check_in(
    request: CheckInRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*RECEPTION_ROLES))
):
    """Issue the next ticket of the day for a service."""
    try:
        return await service.check_in(db, current_user, request.service_id, request.queue_date)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/call-next", response_model=QueueActionResponse)
async def call_next(
    request: Optional[CallNextRequest] = None,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*RECEPTION_ROLES))
):
    """Call the lowest-numbered waiting ticket."""
    queue_date = request.queue_date if request else None
    try:
        return await service.call_next(db, current_user, queue_date)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/{entry_id}/done", response_model=QueueActionResponse)
async def mark_done(
    entry_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*RECEPTION_ROLES))
):
    """Finish the attending ticket."""
    try:
        return await service.mark_done(db, current_user, entry_id)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.get("/attending", response_model=Optional[QueueEntryRecord])
async def current_attending(
    queue_date: Optional[date] = Query(None, description="Defaults to today"),
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    """Get the ticket currently being attended, if any."""
    try:
        return await service.current_attending(db, queue_date)
    except QueueEngineError as e:
        raise to_http_exception(e)

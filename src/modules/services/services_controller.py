# src/modules/services/services_controller.py
"""Services controller with API routes."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth.dependencies import (
    DOCTOR_ROLES, MEDICATION_ROLES, RECEPTION_ROLES, STAFF_ROLES, require_roles,
)
from src.common.database.database import get_db_session
from src.common.exceptions import QueueEngineError
from src.common.utils.global_functions import to_http_exception
from src.models.models import User

from . import services_service as service
from .schemas import (
    PaymentCreateRequest, PaymentStatusUpdateRequest, ServiceActionResponse,
    ServiceCreateRequest, ServiceItemCreateRequest, ServiceItemFinalizeRequest, ServiceRecord,
)

router = APIRouter(prefix="/services", tags=["Services"])


@router.post("", response_model=ServiceActionResponse, status_code=201)
async def create_service(
    request: ServiceCreateRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*RECEPTION_ROLES))
):
    """Book a new service for a client."""
    try:
        return await service.create_service(db, current_user, request)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.get("/{service_id}", response_model=ServiceRecord)
async def get_service(
    service_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    """Get a single service with its line items."""
    try:
        return await service.get_service(db, service_id)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/{service_id}/start", response_model=ServiceActionResponse)
async def start_service(
    service_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*MEDICATION_ROLES))
):
    """Mark a scheduled service as in progress."""
    try:
        return await service.start_service(db, current_user, service_id)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/{service_id}/complete", response_model=ServiceActionResponse)
async def complete_service(
    service_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*MEDICATION_ROLES))
):
    """Complete an in-progress service, stamping who completed it and when."""
    try:
        return await service.complete_service(db, current_user, service_id)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/{service_id}/cancel", response_model=ServiceActionResponse)
async def cancel_service(
    service_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*RECEPTION_ROLES))
):
    """Cancel a service and withdraw it from the queue."""
    try:
        return await service.cancel_service(db, current_user, service_id)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/{service_id}/items", response_model=ServiceActionResponse, status_code=201)
async def add_item(
    service_id: UUID,
    request: ServiceItemCreateRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    """Add a line item to an open service."""
    try:
        return await service.add_item(db, current_user, service_id, request)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.delete("/{service_id}/items/{item_id}", response_model=ServiceActionResponse)
async def remove_item(
    service_id: UUID,
    item_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    """Remove a line item from an open service."""
    try:
        return await service.remove_item(db, current_user, service_id, item_id)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/{service_id}/items/{item_id}/finalize", response_model=ServiceActionResponse)
async def finalize_item(
    service_id: UUID,
    item_id: UUID,
    request: ServiceItemFinalizeRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    """Fix the price of an unfinalized line item."""
    try:
        return await service.finalize_item(db, current_user, service_id, item_id, request)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.post("/{service_id}/payments", response_model=ServiceActionResponse, status_code=201)
async def record_payment(
    service_id: UUID,
    request: PaymentCreateRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*RECEPTION_ROLES))
):
    """Record a payment received for a service."""
    try:
        return await service.record_payment(db, current_user, service_id, request)
    except QueueEngineError as e:
        raise to_http_exception(e)


@router.put("/{service_id}/payment-status", response_model=ServiceActionResponse)
async def set_payment_status(
    service_id: UUID,
    request: PaymentStatusUpdateRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user: User = Depends(require_roles(*DOCTOR_ROLES))
):
    """Correct a service's payment status."""
    try:
        return await service.set_payment_status(db, current_user, service_id, request.payment_status)
    except QueueEngineError as e:
        raise to_http_exception(e)

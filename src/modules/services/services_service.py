# src/modules/services/services_service.py
"""Service lifecycle operations: booking, status transitions, line items and billing state."""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from src.common.database.database import unit_of_work
from src.common.exceptions import EntityNotFound, InvalidTransition
from src.common.realtime.notifier import ChangeAction, ChangeEvent, EntityType, change_notifier
from src.common.utils.clock import utc_now
from src.common.utils.global_messages import GlobalMessages
from src.models.models import (
    Client, Payment, PaymentRecordStatus, PaymentStatus as DBPaymentStatus, Product,
    QueueEntry, Service, ServiceItem, ServiceStatus as DBServiceStatus, User,
)
from src.modules.queue import state_machine as queue_machine
from src.modules.queue.queue_service import list_entry_records, queue_event
from . import state_machine
from .schemas import (
    PaymentCreateRequest, PaymentStatus, ServiceActionResponse, ServiceCreateRequest,
    ServiceItemCreateRequest, ServiceItemFinalizeRequest, ServiceItemRecord, ServiceRecord, ServiceStatus,
)

logger = logging.getLogger(__name__)


# ============================================================================
# RECORDS
# ============================================================================

def _to_record(service: Service, amount_paid: Decimal) -> ServiceRecord:
    return ServiceRecord(
        id=service.id,
        client_id=service.client_id,
        client_name=service.client.full_name if service.client else "",
        service_date=service.service_date,
        service_time=service.service_time,
        service_type=service.service_type,
        status=ServiceStatus(service.status.value),
        payment_status=PaymentStatus(service.payment_status.value),
        total_amount=Decimal(service.total_amount or 0),
        amount_paid=amount_paid,
        financially_closed=state_machine.is_financially_closed(service),
        notes=service.notes,
        created_by=service.created_by,
        completed_by=service.completed_by,
        completed_at=service.completed_at,
        version=service.version,
        items=[
            ServiceItemRecord(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product.name if item.product else "",
                product_type=item.product.type if item.product else "",
                quantity=item.quantity,
                unit_price=item.unit_price,
                discount=item.discount,
                subtotal=item.subtotal,
            )
            for item in service.items
        ],
    )


async def _amounts_paid(session: AsyncSession, service_ids: Sequence[UUID]) -> Dict[UUID, Decimal]:
    if not service_ids:
        return {}
    result = await session.execute(
        select(Payment.service_id, func.coalesce(func.sum(Payment.amount), 0))
        .where(Payment.service_id.in_(service_ids), Payment.status == PaymentRecordStatus.COMPLETED)
        .group_by(Payment.service_id)
    )
    return {service_id: Decimal(total) for service_id, total in result.all()}


async def list_service_records(
    session: AsyncSession,
    *criteria,
    order_by: Iterable = (),
    limit: Optional[int] = None,
) -> List[ServiceRecord]:
    """Plain records for the services matching the criteria, with client, items and amount paid."""
    query = (
        select(Service)
        .options(
            joinedload(Service.client),
            selectinload(Service.items).joinedload(ServiceItem.product),
        )
        .where(*criteria)
        .order_by(*order_by)
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    services = result.unique().scalars().all()
    paid = await _amounts_paid(session, [s.id for s in services])
    return [_to_record(s, paid.get(s.id, Decimal("0"))) for s in services]


async def get_service_record(session: AsyncSession, service_id: UUID) -> ServiceRecord:
    records = await list_service_records(session, Service.id == service_id)
    if not records:
        raise EntityNotFound(f"Service not found: {service_id}", entity_id=service_id)
    return records[0]


def service_event(record: ServiceRecord, action: ChangeAction = ChangeAction.UPDATE) -> ChangeEvent:
    return ChangeEvent(
        entity_type=EntityType.SERVICE,
        entity_id=record.id,
        action=action,
        version=record.version,
        new_state=record,
    )


# ============================================================================
# HELPERS
# ============================================================================

async def _get_service(session: AsyncSession, service_id: UUID, for_update: bool = False) -> Service:
    query = (
        select(Service)
        .options(selectinload(Service.items))
        .where(Service.id == service_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    service = result.scalar_one_or_none()
    if not service:
        raise EntityNotFound(f"Service not found: {service_id}", entity_id=service_id)
    return service


async def _lost_race(session: AsyncSession, service_id: UUID, action: str) -> InvalidTransition:
    """Error for a conditional update that matched no row; reports the status actually stored."""
    service = await _get_service(session, service_id)
    return InvalidTransition(
        f"Cannot {action} service while it is {service.status.value}",
        entity_id=service_id,
        current_status=service.status.value,
    )


def _items_total(service_id: UUID):
    return (
        select(func.coalesce(func.sum(ServiceItem.subtotal), 0))
        .where(ServiceItem.service_id == service_id)
        .scalar_subquery()
    )


def _completed_payment_exists(service_id: UUID):
    return (
        select(Payment.id)
        .where(Payment.service_id == service_id, Payment.status == PaymentRecordStatus.COMPLETED)
        .exists()
    )


# ============================================================================
# QUERIES
# ============================================================================

async def get_service(session: AsyncSession, service_id: UUID) -> ServiceRecord:
    """Get a single service by ID."""
    return await get_service_record(session, service_id)


# ============================================================================
# BOOKING
# ============================================================================

async def create_service(
    session: AsyncSession,
    user: User,
    request: ServiceCreateRequest
) -> ServiceActionResponse:
    """Book a new service; it starts scheduled with payment pending."""
    async with unit_of_work(session):
        client = await session.get(Client, request.client_id)
        if not client:
            raise EntityNotFound(f"Client not found: {request.client_id}", entity_id=request.client_id)

        service = Service(
            client_id=client.id,
            service_date=request.service_date,
            service_time=request.service_time,
            service_type=request.service_type,
            status=DBServiceStatus.SCHEDULED,
            payment_status=DBPaymentStatus.PENDING,
            total_amount=Decimal("0"),
            notes=request.notes,
            created_by=user.id,
            version=1,
        )
        session.add(service)
        await session.flush()
        record = await get_service_record(session, service.id)

    change_notifier.publish(service_event(record, ChangeAction.INSERT))
    logger.info("Service %s booked for %s by %s", record.id, record.service_date, user.id)
    return ServiceActionResponse(success=True, message=GlobalMessages.SERVICE_BOOKED, service=record)


# ============================================================================
# STATUS TRANSITIONS
# ============================================================================

async def start_service(session: AsyncSession, user: User, service_id: UUID) -> ServiceActionResponse:
    """scheduled -> in_progress."""
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        state_machine.ensure_transition(service, DBServiceStatus.IN_PROGRESS)

        result = await session.execute(
            update(Service)
            .where(Service.id == service_id, Service.status == DBServiceStatus.SCHEDULED)
            .values(status=DBServiceStatus.IN_PROGRESS, version=Service.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise await _lost_race(session, service_id, "start")
        record = await get_service_record(session, service_id)

    change_notifier.publish(service_event(record))
    logger.info("Service %s started by %s", service_id, user.id)
    return ServiceActionResponse(success=True, message=GlobalMessages.SERVICE_STARTED, service=record)


async def complete_service(session: AsyncSession, user: User, service_id: UUID) -> ServiceActionResponse:
    """
    in_progress -> completed.

    Status, completion stamp and the recomputed total are written by a single
    UPDATE, so no reader can observe a completed service without its stamp.
    """
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        state_machine.ensure_can_complete(service, service.items)

        unpriced_items = (
            select(ServiceItem.id)
            .where(ServiceItem.service_id == service_id, ServiceItem.subtotal.is_(None))
            .exists()
        )
        result = await session.execute(
            update(Service)
            .where(
                Service.id == service_id,
                Service.status == DBServiceStatus.IN_PROGRESS,
                Service.payment_status != DBPaymentStatus.CANCELLED,
                ~unpriced_items,
            )
            .values(
                status=DBServiceStatus.COMPLETED,
                completed_at=utc_now(),
                completed_by=user.id,
                total_amount=_items_total(service_id),
                version=Service.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise await _lost_race(session, service_id, "complete")
        record = await get_service_record(session, service_id)

    change_notifier.publish(service_event(record))
    logger.info("Service %s completed by %s (total %s)", service_id, user.id, record.total_amount)
    return ServiceActionResponse(success=True, message=GlobalMessages.SERVICE_COMPLETED, service=record)


async def cancel_service(session: AsyncSession, user: User, service_id: UUID) -> ServiceActionResponse:
    """
    scheduled | in_progress -> cancelled.

    The service's open queue ticket is closed in the same transaction, so a
    cancelled service never holds up the queue.
    """
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        paid = await session.execute(select(_completed_payment_exists(service_id)))
        state_machine.ensure_can_cancel(service, bool(paid.scalar()))

        payment_status = service.payment_status
        if payment_status == DBPaymentStatus.PENDING:
            payment_status = DBPaymentStatus.CANCELLED

        result = await session.execute(
            update(Service)
            .where(
                Service.id == service_id,
                Service.status.in_(list(state_machine.CANCELLABLE_STATUSES)),
                ~_completed_payment_exists(service_id),
            )
            .values(
                status=DBServiceStatus.CANCELLED,
                payment_status=payment_status,
                version=Service.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise await _lost_race(session, service_id, "cancel")

        closed_ids = await queue_machine.close_for_service(session, service_id)
        record = await get_service_record(session, service_id)
        entry_records = await list_entry_records(session, QueueEntry.id.in_(closed_ids)) if closed_ids else []

    change_notifier.publish(service_event(record))
    change_notifier.publish_all(queue_event(entry) for entry in entry_records)
    logger.info(
        "Service %s cancelled by %s; %d queue ticket(s) closed",
        service_id, user.id, len(entry_records),
    )
    return ServiceActionResponse(success=True, message=GlobalMessages.SERVICE_CANCELLED, service=record)


# ============================================================================
# LINE ITEMS
# ============================================================================

async def add_item(
    session: AsyncSession,
    user: User,
    service_id: UUID,
    request: ServiceItemCreateRequest
) -> ServiceActionResponse:
    """Add a line item and recompute the service total. Unfinalized items stay out of the total."""
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        state_machine.ensure_mutable(service)

        product = await session.get(Product, request.product_id)
        if not product or not product.is_active:
            raise EntityNotFound(f"Product not found: {request.product_id}", entity_id=request.product_id)

        unit_price = request.unit_price if request.unit_price is not None else Decimal(product.price)
        item = ServiceItem(
            service_id=service_id,
            product_id=product.id,
            quantity=request.quantity,
            unit_price=unit_price,
            discount=request.discount,
            subtotal=(
                state_machine.line_subtotal(request.quantity, unit_price, request.discount)
                if request.finalized else None
            ),
            notes=request.notes,
        )
        session.add(item)
        await session.flush()

        await session.execute(
            update(Service)
            .where(Service.id == service_id)
            .values(total_amount=_items_total(service_id), version=Service.version + 1)
            .execution_options(synchronize_session=False)
        )
        record = await get_service_record(session, service_id)

    change_notifier.publish(service_event(record))
    logger.info("Item %s added to service %s", item.id, service_id)
    return ServiceActionResponse(success=True, message=GlobalMessages.ITEM_ADDED, service=record)


async def remove_item(
    session: AsyncSession,
    user: User,
    service_id: UUID,
    item_id: UUID
) -> ServiceActionResponse:
    """Remove a line item and recompute the service total."""
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        state_machine.ensure_mutable(service)

        result = await session.execute(
            delete(ServiceItem)
            .where(ServiceItem.id == item_id, ServiceItem.service_id == service_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise EntityNotFound(f"Item not found: {item_id}", entity_id=item_id)

        await session.execute(
            update(Service)
            .where(Service.id == service_id)
            .values(total_amount=_items_total(service_id), version=Service.version + 1)
            .execution_options(synchronize_session=False)
        )
        record = await get_service_record(session, service_id)

    change_notifier.publish(service_event(record))
    logger.info("Item %s removed from service %s", item_id, service_id)
    return ServiceActionResponse(success=True, message=GlobalMessages.ITEM_REMOVED, service=record)


async def finalize_item(
    session: AsyncSession,
    user: User,
    service_id: UUID,
    item_id: UUID,
    request: ServiceItemFinalizeRequest
) -> ServiceActionResponse:
    """Fix an item's price so it counts towards the total. Finalizing again reprices it."""
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        state_machine.ensure_mutable(service)

        result = await session.execute(
            select(ServiceItem).where(ServiceItem.id == item_id, ServiceItem.service_id == service_id)
        )
        item = result.scalar_one_or_none()
        if not item:
            raise EntityNotFound(f"Item not found: {item_id}", entity_id=item_id)

        if request.unit_price is not None:
            item.unit_price = request.unit_price
        if request.discount is not None:
            item.discount = request.discount
        subtotal = state_machine.line_subtotal(item.quantity, item.unit_price, item.discount)
        item.subtotal = subtotal
        await session.flush()

        await session.execute(
            update(Service)
            .where(Service.id == service_id)
            .values(total_amount=_items_total(service_id), version=Service.version + 1)
            .execution_options(synchronize_session=False)
        )
        record = await get_service_record(session, service_id)

    change_notifier.publish(service_event(record))
    logger.info("Item %s finalized at %s on service %s", item_id, subtotal, service_id)
    return ServiceActionResponse(success=True, message=GlobalMessages.ITEM_FINALIZED, service=record)


# ============================================================================
# BILLING STATE
# ============================================================================

async def record_payment(
    session: AsyncSession,
    user: User,
    service_id: UUID,
    request: PaymentCreateRequest
) -> ServiceActionResponse:
    """Record a received payment and move payment status to what the amount paid implies."""
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        if service.status == DBServiceStatus.CANCELLED or state_machine.is_financially_closed(service):
            raise InvalidTransition(
                "Payments can no longer be recorded for this service",
                entity_id=service_id,
                current_status=service.payment_status.value,
            )

        session.add(Payment(
            service_id=service_id,
            amount=request.amount,
            payment_method=request.payment_method,
            status=PaymentRecordStatus.COMPLETED,
            paid_at=utc_now(),
            notes=request.notes,
        ))
        await session.flush()

        paid = (await _amounts_paid(session, [service_id])).get(service_id, Decimal("0"))
        implied = state_machine.payment_status_for(paid, Decimal(service.total_amount))
        if implied != service.payment_status:
            state_machine.ensure_payment_transition(service, implied, paid)

        await session.execute(
            update(Service)
            .where(Service.id == service_id)
            .values(payment_status=implied, version=Service.version + 1)
            .execution_options(synchronize_session=False)
        )
        record = await get_service_record(session, service_id)

    change_notifier.publish(service_event(record))
    logger.info("Payment of %s recorded for service %s (%s)", request.amount, service_id, record.payment_status.value)
    return ServiceActionResponse(success=True, message=GlobalMessages.PAYMENT_RECORDED, service=record)


async def set_payment_status(
    session: AsyncSession,
    user: User,
    service_id: UUID,
    payment_status: PaymentStatus
) -> ServiceActionResponse:
    """Explicit payment status change by the billing collaborator."""
    target = DBPaymentStatus(payment_status.value)
    async with unit_of_work(session, service_id):
        service = await _get_service(session, service_id, for_update=True)
        paid = (await _amounts_paid(session, [service_id])).get(service_id, Decimal("0"))
        state_machine.ensure_payment_transition(service, target, paid)

        result = await session.execute(
            update(Service)
            .where(Service.id == service_id, Service.payment_status == service.payment_status)
            .values(payment_status=target, version=Service.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await _get_service(session, service_id)
            raise InvalidTransition(
                "Payment status changed concurrently",
                entity_id=service_id,
                current_status=current.payment_status.value,
            )
        record = await get_service_record(session, service_id)

    change_notifier.publish(service_event(record))
    logger.info("Payment status of service %s set to %s", service_id, target.value)
    return ServiceActionResponse(success=True, message=GlobalMessages.PAYMENT_STATUS_UPDATED, service=record)

# src/modules/queue/queue_service.py
"""Queue operations: check-in, call next, mark done."""

import logging
from datetime import date
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.config import settings
from src.common.database.database import unit_of_work
from src.common.exceptions import (
    AlreadyQueued, AttendingInProgress, Collision, EntityNotFound, InvalidTransition,
)
from src.common.realtime.notifier import ChangeAction, ChangeEvent, EntityType, change_notifier
from src.common.utils.clock import clinic_today, utc_now
from src.common.utils.global_messages import GlobalMessages
from src.models.models import Client, QueueEntry, QueueStatus as DBQueueStatus, Service, User
from src.modules.services import state_machine as service_machine
from . import sequencer
from . import state_machine
from .schemas import QueueActionResponse, QueueEntryRecord, QueueStatus

logger = logging.getLogger(__name__)


# ============================================================================
# RECORDS
# ============================================================================

def _to_record(entry: QueueEntry, client_name: str) -> QueueEntryRecord:
    return QueueEntryRecord(
        id=entry.id,
        service_id=entry.service_id,
        client_name=client_name or "",
        queue_date=entry.queue_date,
        queue_number=entry.queue_number,
        status=QueueStatus(entry.status.value),
        called_at=entry.called_at,
        withdrawn=bool(entry.withdrawn),
        version=entry.version,
    )


async def list_entry_records(
    session: AsyncSession,
    *criteria,
    order_by: Iterable = (QueueEntry.queue_number,),
    limit: Optional[int] = None,
) -> List[QueueEntryRecord]:
    """Plain records for the queue entries matching the criteria, with the client's name."""
    query = (
        select(QueueEntry, Client.full_name)
        .join(Service, QueueEntry.service_id == Service.id)
        .join(Client, Service.client_id == Client.id)
        .where(*criteria)
        .order_by(*order_by)
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return [_to_record(entry, client_name) for entry, client_name in result.all()]


async def _entry_record(session: AsyncSession, entry_id: UUID) -> QueueEntryRecord:
    records = await list_entry_records(session, QueueEntry.id == entry_id)
    if not records:
        raise EntityNotFound(f"Queue entry not found: {entry_id}", entity_id=entry_id)
    return records[0]


def queue_event(record: QueueEntryRecord, action: ChangeAction = ChangeAction.UPDATE) -> ChangeEvent:
    return ChangeEvent(
        entity_type=EntityType.QUEUE_ENTRY,
        entity_id=record.id,
        action=action,
        version=record.version,
        new_state=record,
    )


# ============================================================================
# OPERATIONS
# ============================================================================

async def check_in(
    session: AsyncSession,
    user: User,
    service_id: UUID,
    queue_date: Optional[date] = None
) -> QueueActionResponse:
    """
    Issue the next ticket of the day for a service.

    Ticket number races are retried with a fresh number up to
    TICKET_MAX_RETRIES times before Collision reaches the caller.
    """
    queue_date = queue_date or clinic_today()
    attempts = max(1, settings.TICKET_MAX_RETRIES)

    for attempt in range(1, attempts + 1):
        try:
            async with unit_of_work(session, service_id):
                result = await session.execute(
                    select(Service)
                    .where(Service.id == service_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                service = result.scalar_one_or_none()
                if not service:
                    raise EntityNotFound(f"Service not found: {service_id}", entity_id=service_id)
                service_machine.ensure_queueable(service)

                existing = await state_machine.get_open_entry(session, service_id, queue_date)
                if existing:
                    raise AlreadyQueued(
                        f"Service already holds ticket #{existing.queue_number} for {queue_date}",
                        entity_id=existing.id,
                        current_status=existing.status.value,
                    )

                entry = await sequencer.issue_ticket(session, service_id, queue_date)
                record = await _entry_record(session, entry.id)
            break
        except Collision:
            if attempt == attempts:
                logger.error("Check-in for service %s gave up after %d collisions", service_id, attempts)
                raise
            logger.warning(
                "Ticket collision checking in service %s (attempt %d/%d); retrying",
                service_id, attempt, attempts,
            )

    change_notifier.publish(queue_event(record, ChangeAction.INSERT))
    logger.info("Service %s checked in as ticket #%d for %s", service_id, record.queue_number, queue_date)
    return QueueActionResponse(
        success=True,
        message=GlobalMessages.TICKET_ISSUED.format(number=record.queue_number),
        entry=record
    )


async def call_next(
    session: AsyncSession,
    user: User,
    queue_date: Optional[date] = None
) -> QueueActionResponse:
    """
    Move the lowest-numbered waiting ticket into the attending slot.

    Fails with AttendingInProgress while another ticket of the day is being
    attended. Returns no entry, and changes nothing, when nobody is waiting.
    """
    queue_date = queue_date or clinic_today()
    attempts = max(1, settings.CALL_NEXT_MAX_RETRIES)

    for attempt in range(1, attempts + 1):
        try:
            async with unit_of_work(session):
                attending = await state_machine.get_attending(session, queue_date)
                if attending:
                    raise AttendingInProgress(
                        f"Ticket #{attending.queue_number} is still being attended",
                        entity_id=attending.id,
                        current_status=attending.status.value,
                        queue_number=attending.queue_number,
                    )

                candidate = await state_machine.get_first_waiting(session, queue_date)
                if candidate is None:
                    record = None
                else:
                    state_machine.ensure_transition(candidate, DBQueueStatus.ATTENDING)
                    claimed = await state_machine.claim_attending(session, candidate, utc_now())
                    if not claimed:
                        raise Collision(
                            f"Ticket #{candidate.queue_number} was called concurrently",
                            entity_id=candidate.id,
                        )
                    record = await _entry_record(session, candidate.id)
            break
        except Collision:
            if attempt == attempts:
                logger.error("Call next for %s gave up after %d contended attempts", queue_date, attempts)
                raise
            logger.warning("Contention calling next for %s (attempt %d/%d); retrying", queue_date, attempt, attempts)

    if record is None:
        return QueueActionResponse(success=True, message=GlobalMessages.NOBODY_WAITING, entry=None)

    change_notifier.publish(queue_event(record))
    logger.info("Ticket #%d for %s called by %s", record.queue_number, queue_date, user.id)
    return QueueActionResponse(
        success=True,
        message=GlobalMessages.TICKET_CALLED.format(number=record.queue_number),
        entry=record
    )


async def mark_done(session: AsyncSession, user: User, entry_id: UUID) -> QueueActionResponse:
    """attending -> done. A ticket that is already done is returned unchanged."""
    changed = False
    async with unit_of_work(session, entry_id):
        entry = await state_machine.get_entry(session, entry_id)
        if not entry:
            raise EntityNotFound(f"Queue entry not found: {entry_id}", entity_id=entry_id)

        if entry.status != DBQueueStatus.DONE:
            if entry.status != DBQueueStatus.ATTENDING:
                raise InvalidTransition(
                    f"Ticket #{entry.queue_number} is {entry.status.value}; only an attending ticket can be marked done",
                    entity_id=entry.id,
                    current_status=entry.status.value,
                )
            changed = await state_machine.finish_attending(session, entry_id)
            if not changed:
                current = await state_machine.get_entry(session, entry_id)
                if current.status != DBQueueStatus.DONE:
                    raise InvalidTransition(
                        f"Ticket #{current.queue_number} changed concurrently",
                        entity_id=current.id,
                        current_status=current.status.value,
                    )
        record = await _entry_record(session, entry_id)

    if not changed:
        return QueueActionResponse(success=True, message=GlobalMessages.TICKET_ALREADY_DONE.format(number=record.queue_number), entry=record)

    change_notifier.publish(queue_event(record))
    logger.info("Ticket #%d for %s marked done by %s", record.queue_number, record.queue_date, user.id)
    return QueueActionResponse(
        success=True,
        message=GlobalMessages.TICKET_DONE.format(number=record.queue_number),
        entry=record
    )


async def current_attending(
    session: AsyncSession,
    queue_date: Optional[date] = None
) -> Optional[QueueEntryRecord]:
    """The day's attending ticket, if any."""
    queue_date = queue_date or clinic_today()
    records = await list_entry_records(
        session,
        QueueEntry.queue_date == queue_date,
        QueueEntry.status == DBQueueStatus.ATTENDING,
    )
    return records[0] if records else None

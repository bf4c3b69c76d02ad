# src/modules/queue/state_machine.py
"""Queue ticket transitions: waiting -> attending -> done, or waiting -> done when withdrawn.

Transitions are written as conditional UPDATEs (compare-and-set on the
status column) so a stale read can never regress a ticket or put two
tickets of the same day in the attending slot.
"""

from datetime import date, datetime
from typing import Dict, FrozenSet, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.common.exceptions import Collision, InvalidTransition
from src.models.models import QueueEntry, QueueStatus


QUEUE_TRANSITIONS: Dict[QueueStatus, FrozenSet[QueueStatus]] = {
    QueueStatus.WAITING: frozenset({QueueStatus.ATTENDING, QueueStatus.DONE}),
    QueueStatus.ATTENDING: frozenset({QueueStatus.DONE}),
    QueueStatus.DONE: frozenset(),
}

# Position of each status along the ticket's life; never decreases
STATUS_ORDER: Dict[QueueStatus, int] = {
    QueueStatus.WAITING: 0,
    QueueStatus.ATTENDING: 1,
    QueueStatus.DONE: 2,
}


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    return target in QUEUE_TRANSITIONS[current]


def ensure_transition(entry: QueueEntry, target: QueueStatus) -> None:
    if not can_transition(entry.status, target):
        raise InvalidTransition(
            f"Ticket #{entry.queue_number} cannot move from {entry.status.value} to {target.value}",
            entity_id=entry.id,
            current_status=entry.status.value,
        )


async def get_entry(session: AsyncSession, entry_id: UUID) -> Optional[QueueEntry]:
    result = await session.execute(
        select(QueueEntry)
        .where(QueueEntry.id == entry_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_attending(session: AsyncSession, queue_date: date) -> Optional[QueueEntry]:
    result = await session.execute(
        select(QueueEntry)
        .where(QueueEntry.queue_date == queue_date, QueueEntry.status == QueueStatus.ATTENDING)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_first_waiting(session: AsyncSession, queue_date: date) -> Optional[QueueEntry]:
    result = await session.execute(
        select(QueueEntry)
        .where(QueueEntry.queue_date == queue_date, QueueEntry.status == QueueStatus.WAITING)
        .order_by(QueueEntry.queue_number)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_open_entry(session: AsyncSession, service_id: UUID, queue_date: date) -> Optional[QueueEntry]:
    """The service's non-done ticket for the date, if any."""
    result = await session.execute(
        select(QueueEntry)
        .where(
            QueueEntry.service_id == service_id,
            QueueEntry.queue_date == queue_date,
            QueueEntry.status != QueueStatus.DONE,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def claim_attending(session: AsyncSession, entry: QueueEntry, called_at: datetime) -> bool:
    """
    Move a waiting ticket into the day's attending slot.

    Succeeds only if the ticket is still waiting and no other ticket of the
    same date is attending, checked and written in one statement. Returns
    False when the ticket was taken by someone else; raises Collision when
    the attending slot was filled concurrently.
    """
    other = aliased(QueueEntry)
    slot_taken = (
        select(other.id)
        .where(other.queue_date == entry.queue_date, other.status == QueueStatus.ATTENDING)
        .exists()
    )
    stmt = (
        update(QueueEntry)
        .where(
            QueueEntry.id == entry.id,
            QueueEntry.status == QueueStatus.WAITING,
            ~slot_taken,
        )
        .values(
            status=QueueStatus.ATTENDING,
            called_at=called_at,
            version=QueueEntry.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    try:
        result = await session.execute(stmt)
    except IntegrityError as e:
        raise Collision(
            f"Attending slot for {entry.queue_date} was filled concurrently",
            entity_id=entry.id,
            current_status=QueueStatus.WAITING.value,
        ) from e
    return result.rowcount == 1


async def finish_attending(session: AsyncSession, entry_id: UUID) -> bool:
    """attending -> done. Returns False if the ticket was not attending."""
    stmt = (
        update(QueueEntry)
        .where(QueueEntry.id == entry_id, QueueEntry.status == QueueStatus.ATTENDING)
        .values(status=QueueStatus.DONE, version=QueueEntry.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def close_for_service(session: AsyncSession, service_id: UUID) -> List[UUID]:
    """
    Close every open ticket of a service being cancelled.

    Waiting tickets go straight to done and are flagged withdrawn; they never
    pass through attending. An attending ticket is finished normally.
    Returns the ids of the tickets that changed.
    """
    result = await session.execute(
        select(QueueEntry.id)
        .where(QueueEntry.service_id == service_id, QueueEntry.status != QueueStatus.DONE)
    )
    entry_ids = list(result.scalars().all())
    if not entry_ids:
        return []

    await session.execute(
        update(QueueEntry)
        .where(QueueEntry.service_id == service_id, QueueEntry.status == QueueStatus.WAITING)
        .values(status=QueueStatus.DONE, withdrawn=True, version=QueueEntry.version + 1)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(QueueEntry)
        .where(QueueEntry.service_id == service_id, QueueEntry.status == QueueStatus.ATTENDING)
        .values(status=QueueStatus.DONE, version=QueueEntry.version + 1)
        .execution_options(synchronize_session=False)
    )
    return entry_ids

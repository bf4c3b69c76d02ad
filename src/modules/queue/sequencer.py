# src/modules/queue/sequencer.py
"""Same-day ticket numbering.

Numbers are max + 1 within the queue date, read and inserted in the
caller's transaction. The (queue_date, queue_number) unique constraint
decides concurrent races: the loser gets Collision and retries with a
freshly computed number. Entries are never deleted, so numbers are never
reused.
"""

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.exceptions import Collision
from src.models.models import QueueEntry, QueueStatus

logger = logging.getLogger(__name__)


async def next_number(session: AsyncSession, queue_date: date) -> int:
    """Smallest positive number not yet issued for the date."""
    result = await session.execute(
        select(func.coalesce(func.max(QueueEntry.queue_number), 0))
        .where(QueueEntry.queue_date == queue_date)
    )
    return int(result.scalar_one()) + 1


async def issue_ticket(session: AsyncSession, service_id: UUID, queue_date: date) -> QueueEntry:
    """Insert a waiting entry with the next number. Raises Collision if another caller won the number."""
    number = await next_number(session, queue_date)
    entry = QueueEntry(
        service_id=service_id,
        queue_date=queue_date,
        queue_number=number,
        status=QueueStatus.WAITING,
        withdrawn=False,
        version=1,
    )
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError as e:
        logger.warning("Ticket #%d for %s collided", number, queue_date)
        raise Collision(
            f"Ticket #{number} for {queue_date} was issued concurrently",
            entity_id=service_id,
        ) from e
    return entry

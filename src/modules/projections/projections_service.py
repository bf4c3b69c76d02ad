# src/modules/projections/projections_service.py
"""
Read-only screen projections over the change stream.

Every projection is rebuilt from a snapshot query and then kept current by
folding in live change events. A projection has two filters:

- `in_scope` decides which events it subscribes to at all (e.g. today's
  tickets only); everything else is never delivered to it.
- `matches` decides whether an in-scope record belongs on screen; an update
  that stops matching removes the row.

Per-entity versions make folding idempotent, so duplicate deliveries and
events older than the snapshot are ignored. Entities missing from the
snapshot have no version to compare against; for those, any event stamped
before the snapshot query started is already reflected by it and is dropped.
"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.config import settings
from src.common.database.database import async_session
from src.common.exceptions import EntityNotFound, StorageFailure
from src.common.realtime.notifier import ChangeEvent, ChangeNotifier, EntityType, change_notifier
from src.common.utils.clock import clinic_today, utc_now
from src.models.models import QueueEntry, QueueStatus as DBQueueStatus, Service, ServiceStatus as DBServiceStatus
from src.modules.queue.queue_service import list_entry_records
from src.modules.queue.schemas import QueueEntryRecord, QueueStatus
from src.modules.services.schemas import ServiceRecord, ServiceStatus
from src.modules.services.services_service import list_service_records
from .schemas import (
    DoctorDashboardView, DoctorServiceRow, MedicationPendingView, MedicationServiceRow,
    PublicDisplayTicket, PublicDisplayView, ReceptionQueueRow, ReceptionQueueView,
)

logger = logging.getLogger(__name__)


class Projection:
    """Base class: snapshot loading and event folding shared by every screen."""

    name: str = ""
    entity_type: EntityType

    def __init__(self):
        self._records: Dict[UUID, BaseModel] = {}
        self._versions: Dict[UUID, int] = {}
        self._snapshot_started: Optional[datetime] = None

    async def snapshot_records(self, session: AsyncSession) -> List[BaseModel]:
        raise NotImplementedError

    def in_scope(self, record: BaseModel) -> bool:
        return True

    def matches(self, record: BaseModel) -> bool:
        return self.in_scope(record)

    def render(self) -> BaseModel:
        raise NotImplementedError

    @property
    def records(self) -> List[BaseModel]:
        return list(self._records.values())

    async def load(self, session: AsyncSession) -> BaseModel:
        """Replace the projection's state with a fresh snapshot."""
        started = utc_now()
        try:
            records = await self.snapshot_records(session)
        except SQLAlchemyError as e:
            logger.error("Snapshot for %s failed: %s", self.name, e, exc_info=True)
            raise StorageFailure(f"Storage failure: {e.__class__.__name__}") from e
        self._snapshot_started = started
        self._records = {record.id: record for record in records}
        self._versions = {record.id: record.version for record in records}
        return self.render()

    def accepts(self, event: ChangeEvent) -> bool:
        return event.entity_type == self.entity_type and self.in_scope(event.new_state)

    def apply(self, event: ChangeEvent) -> bool:
        """Fold one event into the projection. Returns True when the rendered view changed."""
        if not self.accepts(event):
            return False
        known = self._versions.get(event.entity_id)
        if known is None:
            if self._snapshot_started is not None and event.timestamp < self._snapshot_started:
                return False
        elif event.version <= known:
            return False
        self._versions[event.entity_id] = event.version

        record = event.new_state
        if self.matches(record):
            self._records[event.entity_id] = record
            return True
        return self._records.pop(event.entity_id, None) is not None


# ============================================================================
# SCREENS
# ============================================================================

class ReceptionQueueProjection(Projection):
    name = "reception"
    entity_type = EntityType.QUEUE_ENTRY

    def __init__(self, queue_date: Optional[date] = None):
        super().__init__()
        self.queue_date = queue_date or clinic_today()

    async def snapshot_records(self, session: AsyncSession) -> List[QueueEntryRecord]:
        return await list_entry_records(session, QueueEntry.queue_date == self.queue_date)

    def in_scope(self, record: QueueEntryRecord) -> bool:
        return record.queue_date == self.queue_date

    def render(self) -> ReceptionQueueView:
        entries = sorted(self._records.values(), key=lambda r: r.queue_number)
        return ReceptionQueueView(
            queue_date=self.queue_date,
            entries=[
                ReceptionQueueRow(
                    id=r.id,
                    service_id=r.service_id,
                    queue_number=r.queue_number,
                    client_name=r.client_name,
                    status=r.status,
                    called_at=r.called_at,
                    withdrawn=r.withdrawn,
                )
                for r in entries
            ],
        )


class MedicationPendingProjection(Projection):
    name = "medication"
    entity_type = EntityType.SERVICE

    async def snapshot_records(self, session: AsyncSession) -> List[ServiceRecord]:
        return await list_service_records(
            session,
            Service.status == DBServiceStatus.SCHEDULED,
            order_by=(Service.service_date, Service.service_time),
        )

    def matches(self, record: ServiceRecord) -> bool:
        return record.status == ServiceStatus.SCHEDULED

    def render(self) -> MedicationPendingView:
        services = sorted(self._records.values(), key=lambda r: (r.service_date, r.service_time))
        return MedicationPendingView(
            services=[
                MedicationServiceRow(
                    id=r.id,
                    client_name=r.client_name,
                    service_date=r.service_date,
                    service_time=r.service_time,
                    service_type=r.service_type,
                    status=r.status,
                )
                for r in services
            ],
        )


class DoctorDashboardProjection(Projection):
    name = "doctor"
    entity_type = EntityType.SERVICE

    def __init__(self, service_date: Optional[date] = None):
        super().__init__()
        self.service_date = service_date or clinic_today()

    async def snapshot_records(self, session: AsyncSession) -> List[ServiceRecord]:
        return await list_service_records(
            session,
            Service.service_date == self.service_date,
            order_by=(Service.service_time,),
        )

    def in_scope(self, record: ServiceRecord) -> bool:
        return record.service_date == self.service_date

    def render(self) -> DoctorDashboardView:
        services = sorted(self._records.values(), key=lambda r: r.service_time)
        return DoctorDashboardView(
            service_date=self.service_date,
            services=[
                DoctorServiceRow(
                    id=r.id,
                    client_id=r.client_id,
                    client_name=r.client_name,
                    service_time=r.service_time,
                    service_type=r.service_type,
                    status=r.status,
                    payment_status=r.payment_status,
                    total_amount=r.total_amount,
                    items=r.items,
                )
                for r in services
            ],
        )


class PublicDisplayProjection(Projection):
    name = "public-display"
    entity_type = EntityType.QUEUE_ENTRY

    def __init__(self, queue_date: Optional[date] = None, waiting_limit: Optional[int] = None):
        super().__init__()
        self.queue_date = queue_date or clinic_today()
        if waiting_limit is None:
            waiting_limit = settings.PUBLIC_DISPLAY_WAITING_LIMIT
        self.waiting_limit = waiting_limit

    async def snapshot_records(self, session: AsyncSession) -> List[QueueEntryRecord]:
        # All open tickets, not just the first page, so the list refills as tickets are called
        return await list_entry_records(
            session,
            QueueEntry.queue_date == self.queue_date,
            QueueEntry.status.in_([DBQueueStatus.WAITING, DBQueueStatus.ATTENDING]),
        )

    def in_scope(self, record: QueueEntryRecord) -> bool:
        return record.queue_date == self.queue_date

    def matches(self, record: QueueEntryRecord) -> bool:
        return self.in_scope(record) and record.status in (QueueStatus.WAITING, QueueStatus.ATTENDING)

    def render(self) -> PublicDisplayView:
        attending = [r for r in self._records.values() if r.status == QueueStatus.ATTENDING]
        waiting = sorted(
            (r for r in self._records.values() if r.status == QueueStatus.WAITING),
            key=lambda r: r.queue_number,
        )
        current = None
        if attending:
            latest = max(attending, key=lambda r: r.queue_number)
            current = PublicDisplayTicket(queue_number=latest.queue_number, client_name=latest.client_name)
        return PublicDisplayView(
            queue_date=self.queue_date,
            current=current,
            waiting=[
                PublicDisplayTicket(queue_number=r.queue_number, client_name=r.client_name)
                for r in waiting[:self.waiting_limit]
            ],
        )


PROJECTIONS: Dict[str, Callable[[Optional[date]], Projection]] = {
    ReceptionQueueProjection.name: lambda selected_date: ReceptionQueueProjection(selected_date),
    MedicationPendingProjection.name: lambda selected_date: MedicationPendingProjection(),
    DoctorDashboardProjection.name: lambda selected_date: DoctorDashboardProjection(selected_date),
    PublicDisplayProjection.name: lambda selected_date: PublicDisplayProjection(selected_date),
}


def build_projection(name: str, selected_date: Optional[date] = None) -> Projection:
    factory = PROJECTIONS.get(name)
    if factory is None:
        raise EntityNotFound(f"Unknown projection: {name}")
    return factory(selected_date)


async def get_snapshot(session: AsyncSession, name: str, selected_date: Optional[date] = None) -> BaseModel:
    """One-shot view for screens that poll instead of subscribing."""
    projection = build_projection(name, selected_date)
    return await projection.load(session)


# ============================================================================
# LIVE FEEDS
# ============================================================================

class ProjectionFeed:
    """
    A projection bound to a live subscription.

    Use as an async context manager: entering subscribes first and then loads
    the snapshot, so nothing committed in between is missed; leaving
    unsubscribes.
    """

    def __init__(
        self,
        projection: Projection,
        session_factory=async_session,
        notifier: ChangeNotifier = change_notifier,
    ):
        self.projection = projection
        self._session_factory = session_factory
        self._notifier = notifier
        self._subscription = None

    def _subscribe(self) -> None:
        self._subscription = self._notifier.subscribe(
            [self.projection.entity_type],
            event_filter=self.projection.accepts,
        )

    async def __aenter__(self) -> "ProjectionFeed":
        self._subscribe()
        try:
            await self.resync()
        except Exception:
            self.close()
            raise
        logger.info("Projection feed %s attached", self.projection.name)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
            logger.info("Projection feed %s detached", self.projection.name)

    async def resync(self) -> BaseModel:
        """
        Reload the snapshot.

        Events are published after their commit, so everything queued before
        the snapshot query is already part of it and is discarded. Events that
        arrive while the query runs are folded in by `next_view`.
        """
        if self._subscription is not None:
            dropped = self._subscription.drain()
            if dropped:
                logger.debug("Projection feed %s discarded %d queued event(s)", self.projection.name, dropped)
        async with self._session_factory() as session:
            return await self.projection.load(session)

    def view(self) -> BaseModel:
        return self.projection.render()

    async def next_view(self) -> Optional[BaseModel]:
        """
        Wait for the next event that changes the view. None once the feed is closed.

        If the subscription was cut off for falling behind, the feed subscribes
        again and returns a freshly loaded view.
        """
        while self._subscription is not None:
            event = await self._subscription.get()
            if event is None:
                if self._subscription is None or not self._subscription.overflowed:
                    return None
                logger.warning("Projection feed %s fell behind; resyncing", self.projection.name)
                self._subscribe()
                return await self.resync()
            if self.projection.apply(event):
                return self.projection.render()
        return None

    def __aiter__(self):
        return self._views()

    async def _views(self):
        while True:
            view = await self.next_view()
            if view is None:
                return
            yield view

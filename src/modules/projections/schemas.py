# src/modules/projections/schemas.py
"""Role-specific views. Each carries only the fields its screen shows."""

from typing import Optional, List
from datetime import date, time, datetime
from decimal import Decimal
from pydantic import BaseModel
from uuid import UUID

from src.modules.queue.schemas import QueueStatus
from src.modules.services.schemas import PaymentStatus, ServiceItemRecord, ServiceStatus


# ============================================================================
# RECEPTION
# ============================================================================

class ReceptionQueueRow(BaseModel):
    id: UUID
    service_id: UUID
    queue_number: int
    client_name: str
    status: QueueStatus
    called_at: Optional[datetime] = None
    withdrawn: bool = False


class ReceptionQueueView(BaseModel):
    """Today's tickets in any status, by number."""
    queue_date: date
    entries: List[ReceptionQueueRow]


# ============================================================================
# MEDICATION
# ============================================================================

class MedicationServiceRow(BaseModel):
    id: UUID
    client_name: str
    service_date: date
    service_time: time
    service_type: str
    status: ServiceStatus


class MedicationPendingView(BaseModel):
    """Scheduled services, earliest first."""
    services: List[MedicationServiceRow]


# ============================================================================
# DOCTOR
# ============================================================================

class DoctorServiceRow(BaseModel):
    id: UUID
    client_id: UUID
    client_name: str
    service_time: time
    service_type: str
    status: ServiceStatus
    payment_status: PaymentStatus
    total_amount: Decimal
    items: List[ServiceItemRecord]


class DoctorDashboardView(BaseModel):
    """Services of the selected day with their line items and totals."""
    service_date: date
    services: List[DoctorServiceRow]


# ============================================================================
# PUBLIC DISPLAY
# ============================================================================

class PublicDisplayTicket(BaseModel):
    queue_number: int
    client_name: str


class PublicDisplayView(BaseModel):
    """The ticket being attended and the next waiting tickets."""
    queue_date: date
    current: Optional[PublicDisplayTicket] = None
    waiting: List[PublicDisplayTicket]

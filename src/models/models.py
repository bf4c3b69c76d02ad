# src/models/models.py

import uuid
import enum

from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, ForeignKey, Index, Integer,
    Numeric, String, Text, DateTime, Time, Uuid,
    Enum as SAEnum, UniqueConstraint,
    func, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _enum_values(enum_cls):
    """Persist enum values (e.g. 'in_progress') rather than member names."""
    return [member.value for member in enum_cls]


# ============================================================================
# ENUMS
# ============================================================================

class StaffRole(enum.Enum):
    RECEPTION = "reception"
    MEDICATION = "medication"
    DOCTOR = "doctor"


class ServiceStatus(enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentRecordStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class QueueStatus(enum.Enum):
    WAITING = "waiting"
    ATTENDING = "attending"
    DONE = "done"


# ============================================================================
# STAFF / CLIENT MODELS
# ============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    role = Column(SAEnum(StaffRole, name="staffrole", values_callable=_enum_values), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"


class Client(Base):
    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(20), nullable=False)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Client(id={self.id}, name={self.full_name})>"


# ============================================================================
# CATALOG MODELS
# ============================================================================

class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    name = Column(String(200), nullable=False)
    type = Column(String(50), nullable=False)  # medication, procedure, material
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name})>"


# ============================================================================
# SERVICE MODELS
# ============================================================================

class Service(Base):
    __tablename__ = "services"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    client_id = Column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    service_date = Column(Date, nullable=False)
    service_time = Column(Time, nullable=False)
    service_type = Column(String(100), nullable=False)
    status = Column(
        SAEnum(ServiceStatus, name="servicestatus", values_callable=_enum_values),
        nullable=False, default=ServiceStatus.SCHEDULED,
    )
    payment_status = Column(
        SAEnum(PaymentStatus, name="paymentstatus", values_callable=_enum_values),
        nullable=False, default=PaymentStatus.PENDING,
    )
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    completed_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    client = relationship("Client")
    items = relationship("ServiceItem", back_populates="service", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="service", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_services_total_non_negative"),
        Index("idx_services_date", "service_date"),
        Index("idx_services_status", "status"),
    )

    def __repr__(self):
        return f"<Service(id={self.id}, date={self.service_date}, status={self.status.value})>"


class ServiceItem(Base):
    __tablename__ = "service_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    service_id = Column(Uuid, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    subtotal = Column(Numeric(10, 2), nullable=True)  # NULL until the item is priced
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    service = relationship("Service", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_service_items_quantity_positive"),
        Index("idx_service_items_service", "service_id"),
    )

    def __repr__(self):
        return f"<ServiceItem(id={self.id}, service_id={self.service_id}, subtotal={self.subtotal})>"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    service_id = Column(Uuid, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    status = Column(
        SAEnum(PaymentRecordStatus, name="paymentrecordstatus", values_callable=_enum_values),
        nullable=False, default=PaymentRecordStatus.COMPLETED,
    )
    paid_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    service = relationship("Service", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("idx_payments_service", "service_id"),
    )


# ============================================================================
# QUEUE MODELS
# ============================================================================

class QueueEntry(Base):
    __tablename__ = "queue"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, nullable=False)
    service_id = Column(Uuid, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    queue_date = Column(Date, nullable=False)
    queue_number = Column(Integer, nullable=False)
    status = Column(
        SAEnum(QueueStatus, name="queuestatus", values_callable=_enum_values),
        nullable=False, default=QueueStatus.WAITING,
    )
    called_at = Column(DateTime(timezone=True), nullable=True)
    withdrawn = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    service = relationship("Service")

    __table_args__ = (
        UniqueConstraint("queue_date", "queue_number", name="uq_queue_date_number"),
        CheckConstraint("queue_number > 0", name="ck_queue_number_positive"),
        # At most one attending ticket per day
        Index(
            "uq_queue_one_attending_per_date", "queue_date",
            unique=True,
            postgresql_where=text("status = 'attending'"),
            sqlite_where=text("status = 'attending'"),
        ),
        # At most one open ticket per service per day
        Index(
            "uq_queue_open_service_per_date", "service_id", "queue_date",
            unique=True,
            postgresql_where=text("status <> 'done'"),
            sqlite_where=text("status <> 'done'"),
        ),
        Index("idx_queue_date_status", "queue_date", "status"),
    )

    def __repr__(self):
        return f"<QueueEntry(id={self.id}, date={self.queue_date}, number={self.queue_number}, status={self.status.value})>"

# src/modules/services/state_machine.py
"""Service status and payment status transition rules.

Status:   scheduled -> in_progress -> completed
          scheduled | in_progress -> cancelled
Payment:  pending -> partial -> completed
          pending | partial -> cancelled

Completed and cancelled services are terminal; only their payment status
may still change.
"""

from decimal import Decimal
from typing import Dict, FrozenSet, Iterable

from src.common.exceptions import InvalidTransition
from src.models.models import PaymentStatus, Service, ServiceItem, ServiceStatus


SERVICE_TRANSITIONS: Dict[ServiceStatus, FrozenSet[ServiceStatus]] = {
    ServiceStatus.SCHEDULED: frozenset({ServiceStatus.IN_PROGRESS, ServiceStatus.CANCELLED}),
    ServiceStatus.IN_PROGRESS: frozenset({ServiceStatus.COMPLETED, ServiceStatus.CANCELLED}),
    ServiceStatus.COMPLETED: frozenset(),
    ServiceStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PARTIAL, PaymentStatus.COMPLETED, PaymentStatus.CANCELLED}),
    PaymentStatus.PARTIAL: frozenset({PaymentStatus.COMPLETED, PaymentStatus.CANCELLED}),
    PaymentStatus.COMPLETED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({ServiceStatus.COMPLETED, ServiceStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({ServiceStatus.SCHEDULED, ServiceStatus.IN_PROGRESS})
QUEUEABLE_STATUSES = frozenset({ServiceStatus.SCHEDULED, ServiceStatus.IN_PROGRESS})
CLOSED_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.CANCELLED})


def can_transition(current: ServiceStatus, target: ServiceStatus) -> bool:
    return target in SERVICE_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def is_terminal(service: Service) -> bool:
    return service.status in TERMINAL_STATUSES


def is_financially_closed(service: Service) -> bool:
    """True once billing is settled either way (paid in full or cancelled)."""
    return service.payment_status in CLOSED_PAYMENT_STATUSES


def ensure_transition(service: Service, target: ServiceStatus) -> None:
    if not can_transition(service.status, target):
        raise InvalidTransition(
            f"Service cannot move from {service.status.value} to {target.value}",
            entity_id=service.id,
            current_status=service.status.value,
        )


def ensure_mutable(service: Service) -> None:
    """Line items may only change while the service is open and billing is unsettled."""
    if is_terminal(service):
        raise InvalidTransition(
            f"Service is {service.status.value}; line items are frozen",
            entity_id=service.id,
            current_status=service.status.value,
        )
    if is_financially_closed(service):
        raise InvalidTransition(
            f"Payment is {service.payment_status.value}; line items are frozen",
            entity_id=service.id,
            current_status=service.payment_status.value,
        )


def ensure_queueable(service: Service) -> None:
    if service.status not in QUEUEABLE_STATUSES:
        raise InvalidTransition(
            f"Service is {service.status.value} and cannot enter the queue",
            entity_id=service.id,
            current_status=service.status.value,
        )


def ensure_can_complete(service: Service, items: Iterable[ServiceItem]) -> None:
    """Guards for in_progress -> completed."""
    ensure_transition(service, ServiceStatus.COMPLETED)
    if service.payment_status == PaymentStatus.CANCELLED:
        raise InvalidTransition(
            "Service with cancelled payment cannot be completed",
            entity_id=service.id,
            current_status=service.status.value,
        )
    unpriced = [item for item in items if item.subtotal is None]
    if unpriced:
        raise InvalidTransition(
            f"{len(unpriced)} line item(s) are not finalized",
            entity_id=service.id,
            current_status=service.status.value,
        )


def ensure_can_cancel(service: Service, has_completed_payment: bool) -> None:
    ensure_transition(service, ServiceStatus.CANCELLED)
    if has_completed_payment:
        raise InvalidTransition(
            "Service with a completed payment cannot be cancelled",
            entity_id=service.id,
            current_status=service.status.value,
        )


def ensure_payment_transition(
    service: Service, target: PaymentStatus, amount_paid: Decimal
) -> None:
    if not can_transition_payment(service.payment_status, target):
        raise InvalidTransition(
            f"Payment cannot move from {service.payment_status.value} to {target.value}",
            entity_id=service.id,
            current_status=service.payment_status.value,
        )
    if target == PaymentStatus.COMPLETED and amount_paid < Decimal(service.total_amount):
        raise InvalidTransition(
            f"Amount paid {amount_paid} is below the total {service.total_amount}",
            entity_id=service.id,
            current_status=service.payment_status.value,
        )


def payment_status_for(amount_paid: Decimal, total_amount: Decimal) -> PaymentStatus:
    """Payment status implied by the amount received so far."""
    if amount_paid <= 0:
        return PaymentStatus.PENDING
    if amount_paid < total_amount:
        return PaymentStatus.PARTIAL
    return PaymentStatus.COMPLETED


def line_subtotal(quantity: int, unit_price: Decimal, discount: Decimal) -> Decimal:
    subtotal = Decimal(quantity) * Decimal(unit_price) - Decimal(discount)
    return subtotal if subtotal > 0 else Decimal("0")

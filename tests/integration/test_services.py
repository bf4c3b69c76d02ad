"""Service lifecycle, line items and billing state against a real database."""

import uuid
from datetime import date, time
from decimal import Decimal

import pytest
from sqlalchemy import select

from src.common.exceptions import EntityNotFound, InvalidTransition
from src.common.realtime.notifier import ChangeAction, EntityType, change_notifier
from src.models.models import Service, StaffRole
from src.modules.services import services_service
from src.modules.services.schemas import (
    PaymentCreateRequest, PaymentStatus, ServiceCreateRequest, ServiceItemCreateRequest,
    ServiceItemFinalizeRequest, ServiceStatus,
)

pytestmark = pytest.mark.integration


async def test_booking_starts_scheduled_and_pending(session, receptionist, book_service):
    subscription = change_notifier.subscribe([EntityType.SERVICE])

    service = await book_service()

    assert service.status == ServiceStatus.SCHEDULED
    assert service.payment_status == PaymentStatus.PENDING
    assert service.total_amount == Decimal("0")
    assert service.created_by == receptionist.id
    assert service.client_name == "Ana Ribeiro"
    event = subscription.get_nowait()
    assert event.action == ChangeAction.INSERT
    assert event.version == 1


async def test_booking_for_unknown_client(session, receptionist):
    with pytest.raises(EntityNotFound):
        await services_service.create_service(
            session,
            receptionist,
            ServiceCreateRequest(
                client_id=uuid.uuid4(),
                service_date=date(2024, 1, 1),
                service_time=time(10, 0),
                service_type="Consultation",
            ),
        )


async def test_items_keep_the_total_in_sync(session, receptionist, product, book_service):
    service = await book_service()

    response = await services_service.add_item(
        session, receptionist, service.id,
        ServiceItemCreateRequest(product_id=product.id, quantity=2, discount=Decimal("10.00")),
    )
    assert response.service.total_amount == Decimal("80.00")
    item = response.service.items[0]
    assert item.unit_price == Decimal("45.00")
    assert item.subtotal == Decimal("80.00")
    assert item.product_name == "Vitamin B12 injection"

    response = await services_service.add_item(
        session, receptionist, service.id,
        ServiceItemCreateRequest(product_id=product.id, unit_price=Decimal("30.00")),
    )
    assert response.service.total_amount == Decimal("110.00")

    response = await services_service.remove_item(session, receptionist, service.id, item.id)
    assert response.service.total_amount == Decimal("30.00")
    assert len(response.service.items) == 1

    with pytest.raises(EntityNotFound):
        await services_service.remove_item(session, receptionist, service.id, item.id)


async def test_completion_stamps_actor_time_and_total(session, receptionist, staff, product, book_service):
    nurse = staff[StaffRole.MEDICATION]
    service = await book_service()
    await services_service.add_item(
        session, receptionist, service.id, ServiceItemCreateRequest(product_id=product.id),
    )

    with pytest.raises(InvalidTransition):
        await services_service.complete_service(session, nurse, service.id)

    await services_service.start_service(session, nurse, service.id)
    response = await services_service.complete_service(session, nurse, service.id)

    completed = response.service
    assert completed.status == ServiceStatus.COMPLETED
    assert completed.completed_by == nurse.id
    assert completed.completed_at is not None
    assert completed.total_amount == Decimal("45.00")


async def test_completion_waits_for_unfinalized_items(session, receptionist, staff, product, book_service):
    nurse = staff[StaffRole.MEDICATION]
    service = await book_service()
    await services_service.start_service(session, nurse, service.id)
    response = await services_service.add_item(
        session, nurse, service.id,
        ServiceItemCreateRequest(product_id=product.id, quantity=2, finalized=False),
    )
    item = response.service.items[0]
    assert item.subtotal is None
    assert response.service.total_amount == Decimal("0")

    with pytest.raises(InvalidTransition):
        await services_service.complete_service(session, nurse, service.id)

    stored = (await session.execute(
        select(Service).where(Service.id == service.id).execution_options(populate_existing=True)
    )).scalar_one()
    assert stored.completed_at is None
    assert stored.completed_by is None

    response = await services_service.finalize_item(
        session, nurse, service.id, item.id, ServiceItemFinalizeRequest(discount=Decimal("10.00")),
    )
    assert response.service.items[0].subtotal == Decimal("80.00")
    assert response.service.total_amount == Decimal("80.00")

    response = await services_service.complete_service(session, nurse, service.id)
    assert response.service.status == ServiceStatus.COMPLETED
    assert response.service.total_amount == Decimal("80.00")


async def test_finalize_unknown_item(session, receptionist, book_service):
    service = await book_service()

    with pytest.raises(EntityNotFound):
        await services_service.finalize_item(
            session, receptionist, service.id, uuid.uuid4(), ServiceItemFinalizeRequest(),
        )


async def test_terminal_service_freezes_items(session, receptionist, staff, product, book_service):
    service = await book_service()
    await services_service.cancel_service(session, receptionist, service.id)

    with pytest.raises(InvalidTransition):
        await services_service.add_item(
            session, receptionist, service.id, ServiceItemCreateRequest(product_id=product.id),
        )
    with pytest.raises(InvalidTransition):
        await services_service.start_service(session, staff[StaffRole.MEDICATION], service.id)


async def test_cancel_marks_pending_payment_cancelled(session, receptionist, book_service):
    service = await book_service()

    response = await services_service.cancel_service(session, receptionist, service.id)

    assert response.service.status == ServiceStatus.CANCELLED
    assert response.service.payment_status == PaymentStatus.CANCELLED
    assert response.service.financially_closed is True

    with pytest.raises(InvalidTransition):
        await services_service.cancel_service(session, receptionist, service.id)


async def test_payments_move_payment_status(session, receptionist, product, book_service):
    service = await book_service()
    await services_service.add_item(
        session, receptionist, service.id,
        ServiceItemCreateRequest(product_id=product.id, quantity=2),
    )

    partial = await services_service.record_payment(
        session, receptionist, service.id, PaymentCreateRequest(amount=Decimal("40.00"), payment_method="pix"),
    )
    assert partial.service.payment_status == PaymentStatus.PARTIAL
    assert partial.service.amount_paid == Decimal("40.00")

    paid = await services_service.record_payment(
        session, receptionist, service.id, PaymentCreateRequest(amount=Decimal("50.00"), payment_method="card"),
    )
    assert paid.service.payment_status == PaymentStatus.COMPLETED
    assert paid.service.financially_closed is True

    # Settled billing freezes the service's items and payments
    with pytest.raises(InvalidTransition):
        await services_service.add_item(
            session, receptionist, service.id, ServiceItemCreateRequest(product_id=product.id),
        )
    with pytest.raises(InvalidTransition):
        await services_service.record_payment(
            session, receptionist, service.id, PaymentCreateRequest(amount=Decimal("1.00"), payment_method="cash"),
        )


async def test_paid_service_cannot_be_cancelled(session, receptionist, product, book_service):
    service = await book_service()
    await services_service.add_item(
        session, receptionist, service.id, ServiceItemCreateRequest(product_id=product.id),
    )
    await services_service.record_payment(
        session, receptionist, service.id, PaymentCreateRequest(amount=Decimal("10.00"), payment_method="cash"),
    )

    with pytest.raises(InvalidTransition):
        await services_service.cancel_service(session, receptionist, service.id)


async def test_explicit_payment_status_changes(session, receptionist, staff, product, book_service):
    doctor = staff[StaffRole.DOCTOR]
    service = await book_service()
    await services_service.add_item(
        session, receptionist, service.id, ServiceItemCreateRequest(product_id=product.id),
    )

    with pytest.raises(InvalidTransition) as exc_info:
        await services_service.set_payment_status(session, doctor, service.id, PaymentStatus.COMPLETED)
    assert exc_info.value.current_status == "pending"

    response = await services_service.set_payment_status(session, doctor, service.id, PaymentStatus.CANCELLED)
    assert response.service.payment_status == PaymentStatus.CANCELLED

    with pytest.raises(InvalidTransition):
        await services_service.set_payment_status(session, doctor, service.id, PaymentStatus.PENDING)


async def test_every_change_bumps_the_version(session, receptionist, staff, product, book_service):
    nurse = staff[StaffRole.MEDICATION]
    service = await book_service()
    versions = [service.version]

    response = await services_service.add_item(
        session, receptionist, service.id, ServiceItemCreateRequest(product_id=product.id),
    )
    versions.append(response.service.version)
    versions.append((await services_service.start_service(session, nurse, service.id)).service.version)
    versions.append((await services_service.complete_service(session, nurse, service.id)).service.version)

    assert versions == [1, 2, 3, 4]
    assert (await services_service.get_service(session, service.id)).version == 4

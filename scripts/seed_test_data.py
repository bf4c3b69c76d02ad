# scripts/seed_test_data.py
"""
Seed script for local testing of the clinic queue.
Creates one staff member per screen, a few clients and products, and a day
of services with some of them already checked in.

Staff:
- RECEPTION: Marina Souza - front desk, books services and runs the queue
- MEDICATION: Paulo Lima - prepares and applies medication
- DOCTOR: Dra. Helena Costa - clinic owner, sees every screen

Run: python -m scripts.seed_test_data
"""

import asyncio
from datetime import time
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from src.common.database.database import async_session
from src.common.utils.clock import clinic_today
from src.auth.auth_service import create_user_token
from src.models.models import (
    User, Client, Product, Service, ServiceItem, Payment, QueueEntry, StaffRole,
)
from src.modules.services import services_service
from src.modules.services.schemas import ServiceCreateRequest, ServiceItemCreateRequest
from src.modules.queue import queue_service


# =============================================================================
# CONSTANTS
# =============================================================================

STAFF = [
    ("reception@clinic.test", "Marina Souza", StaffRole.RECEPTION),
    ("medication@clinic.test", "Paulo Lima", StaffRole.MEDICATION),
    ("doctor@clinic.test", "Dra. Helena Costa", StaffRole.DOCTOR),
]

CLIENTS = [
    ("Ana Ribeiro", "+55 11 91234-0001"),
    ("Bruno Carvalho", "+55 11 91234-0002"),
    ("Carla Mendes", "+55 11 91234-0003"),
    ("Diego Ferreira", "+55 11 91234-0004"),
]

PRODUCTS = [
    ("Vitamin B12 injection", "medication", Decimal("45.00")),
    ("Iron infusion", "medication", Decimal("180.00")),
    ("Application fee", "procedure", Decimal("20.00")),
    ("Syringe kit", "material", Decimal("5.50")),
]


async def clear_existing_data(db: AsyncSession):
    """Clear all test data (if needed for re-seeding)."""
    print("🧹 Clearing existing data...")

    # Delete in reverse order of dependencies
    tables_to_clear = [QueueEntry, Payment, ServiceItem, Service, Product, Client, User]
    for table in tables_to_clear:
        await db.execute(delete(table))

    await db.commit()
    print("✅ Data cleared")


# =============================================================================
# REFERENCE DATA
# =============================================================================

async def create_staff(db: AsyncSession):
    print("👩‍⚕️ Creating staff...")
    staff = {}
    for email, full_name, role in STAFF:
        user = User(email=email, full_name=full_name, role=role, is_active=True)
        db.add(user)
        staff[role] = user
    await db.flush()
    return staff


async def create_clients(db: AsyncSession):
    print("🧑 Creating clients...")
    clients = []
    for full_name, phone in CLIENTS:
        client = Client(full_name=full_name, phone=phone)
        db.add(client)
        clients.append(client)
    await db.flush()
    return clients


async def create_products(db: AsyncSession):
    print("💊 Creating products...")
    products = []
    for name, product_type, price in PRODUCTS:
        product = Product(name=name, type=product_type, price=price, is_active=True)
        db.add(product)
        products.append(product)
    await db.flush()
    return products


# =============================================================================
# TODAY'S SERVICES
# =============================================================================

async def create_services(db: AsyncSession, staff, clients, products):
    """Book one service per client and check the first three in."""
    print("📅 Booking today's services...")
    today = clinic_today()
    receptionist = staff[StaffRole.RECEPTION]

    service_ids = []
    for index, client in enumerate(clients):
        response = await services_service.create_service(
            db,
            receptionist,
            ServiceCreateRequest(
                client_id=client.id,
                service_date=today,
                service_time=time(8 + index, 0),
                service_type="Medication application",
            ),
        )
        service_id = response.service.id
        await services_service.add_item(
            db, receptionist, service_id,
            ServiceItemCreateRequest(product_id=products[index % 2].id),
        )
        await services_service.add_item(
            db, receptionist, service_id,
            ServiceItemCreateRequest(product_id=products[2].id),
        )
        service_ids.append(service_id)

    print("🎫 Checking in...")
    for service_id in service_ids[:3]:
        response = await queue_service.check_in(db, receptionist, service_id, today)
        print(f"   Ticket #{response.entry.queue_number} - {response.entry.client_name}")

    await queue_service.call_next(db, receptionist, today)


async def seed_all_data(db: AsyncSession):
    """Main seeding function."""
    print("\n🌱 Starting clinic queue test data seed")
    print("=" * 50)

    staff = await create_staff(db)
    clients = await create_clients(db)
    products = await create_products(db)
    await db.commit()

    await create_services(db, staff, clients, products)

    print("\n" + "=" * 50)
    print("✅ Seed complete. Tokens:")
    for user in staff.values():
        print(f"   {user.role.value:<11} {user.email}\n   {create_user_token(user)}\n")


# =============================================================================
# MAIN
# =============================================================================

async def main():
    """Run the seed script."""
    async with async_session() as db:
        try:
            await clear_existing_data(db)
            await seed_all_data(db)
        except Exception as e:
            await db.rollback()
            print(f"\n❌ Error during seeding: {e}")
            raise


if __name__ == "__main__":
    asyncio.run(main())

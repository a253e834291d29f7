"""
Database seeding script for a demo fleet.

Creates a dispatcher, a handful of drivers around Manhattan, patients and
unassigned trips so the auto scheduler has something to work on.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.core.clock import utcnow
from backend.app.core.jwt import create_access_token
# Import models to ensure they are registered with Base
from backend.app.models.profile import Profile
from backend.app.models.patient import Patient
from backend.app.models.trip import Trip
from backend.app.models.notification import Notification
from backend.app.models.audit_log import AuditLog
from backend.app.models.enums import ProfileRole, ProfileStatus
from backend.app.models.trip_enums import TripStatus
from sqlalchemy import select

# (name, latitude, longitude, days employed); None location = tracking off
DRIVERS = [
    ("Maria Lopez", 40.7580, -73.9855, 900),
    ("James Chen", 40.7306, -73.9866, 400),
    ("Aisha Bello", 40.7831, -73.9712, 120),
    ("Tom Walsh", None, None, None),
]

PATIENTS = [
    ("Ruth Green", "wheelchair"),
    ("Samuel Ortiz", "ambulatory"),
    ("Linda Park", "stretcher"),
]

# (pickup address, lat, lng, hours from now)
PICKUPS = [
    ("350 5th Ave, New York, NY", 40.7484, -73.9857, 2),
    ("1 Centre St, New York, NY", 40.7127, -74.0042, 3),
    ("200 Central Park W, New York, NY", 40.7813, -73.9740, 4),
    ("Unknown address, geocoding failed", None, None, 5),
]


async def seed_fleet():
    """
    Seed a dispatcher, drivers, patients and unscheduled trips.

    Skips everything if the dispatcher already exists.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting fleet seeding...")

        result = await db.execute(
            select(Profile).where(Profile.email == "dispatch@nemt.local")
        )
        dispatcher = result.scalar_one_or_none()

        if dispatcher:
            print("ℹ️  Dispatcher already exists, skipping seeding")
        else:
            dispatcher = Profile(
                full_name="Dana Dispatcher",
                email="dispatch@nemt.local",
                role=ProfileRole.DISPATCHER,
                status=ProfileStatus.ACTIVE,
            )
            db.add(dispatcher)

            today = date.today()
            for name, lat, lng, days in DRIVERS:
                db.add(Profile(
                    full_name=name,
                    role=ProfileRole.DRIVER,
                    status=ProfileStatus.ACTIVE,
                    phone="555-0100",
                    current_latitude=lat,
                    current_longitude=lng,
                    first_start_date=today - timedelta(days=days) if days else None,
                ))
            print(f"✅ Created {len(DRIVERS)} drivers")

            patients = [Patient(full_name=name, mobility_needs=needs) for name, needs in PATIENTS]
            db.add_all(patients)
            await db.flush()

            now = utcnow()
            for i, (address, lat, lng, hours) in enumerate(PICKUPS):
                db.add(Trip(
                    patient_id=patients[i % len(patients)].id,
                    pickup_address=address,
                    pickup_lat=lat,
                    pickup_lng=lng,
                    dropoff_address="Mount Sinai Hospital, New York, NY",
                    dropoff_lat=40.7900,
                    dropoff_lng=-73.9526,
                    scheduled_pickup_time=now + timedelta(hours=hours),
                    status=TripStatus.PENDING,
                ))
            print(f"✅ Created {len(PICKUPS)} unscheduled trips")

            await db.commit()
            await db.refresh(dispatcher)

        token = create_access_token(
            data={"sub": dispatcher.email, "user_id": dispatcher.id},
            expires_delta=timedelta(days=7),
        )

        print("\n🎉 Fleet seeding completed successfully!")
        print("\nDispatcher token (valid 7 days):")
        print(f"  {token}")
        print("\nTry: POST /v1/auto-scheduler/run with 'Authorization: Bearer <token>'")


if __name__ == "__main__":
    asyncio.run(seed_fleet())

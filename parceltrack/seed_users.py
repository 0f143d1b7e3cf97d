"""
Database seeding script for the principal directory.

Creates one ADMIN, one CUSTOMER and one AGENT and prints a development
bearer token for each. Run this script after the database is set up.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from parceltrack.app.db.session import AsyncSessionLocal, engine, Base
from parceltrack.app.models.user import User
from parceltrack.app.models.enums import UserRole
from parceltrack.app.core.jwt import token_for
from sqlalchemy import select

SEED_USERS = [
    ("admin", "admin@parceltrack.dev", UserRole.ADMIN),
    ("customer", "customer@parceltrack.dev", UserRole.CUSTOMER),
    ("agent", "agent@parceltrack.dev", UserRole.AGENT),
]


async def seed_users():
    """Seed one user per role; existing usernames are left alone."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")

        users = []
        for username, email, role in SEED_USERS:
            result = await db.execute(select(User).where(User.username == username))
            user = result.scalar_one_or_none()
            if user is None:
                user = User(email=email, username=username, role=role, is_active=True)
                db.add(user)
                print(f"✅ Created {role.value.upper()} user ({username})")
            else:
                print(f"ℹ️  {username} already exists, skipping")
            users.append(user)

        await db.commit()

        print("\n🎉 User seeding completed successfully!")
        print("\nDevelopment tokens:")
        for user in users:
            token = token_for(user)
            print(f"  - {user.role.value:<9} id={user.id}: {token}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_users())

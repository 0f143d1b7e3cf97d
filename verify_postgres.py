import asyncio
import sys

import asyncpg
from dotenv import load_dotenv

# Load env vars before the settings object reads them
load_dotenv("parceltrack/.env")

from parceltrack.app.core.config import settings  # noqa: E402

# asyncpg wants a plain postgresql:// DSN
db_url = settings.database_url.replace("+asyncpg", "")

print(f"Testing connection to: {db_url}")


async def check_db():
    try:
        conn = await asyncpg.connect(db_url)
    except (OSError, asyncpg.PostgresError) as e:
        print(f"❌ Connection Failed: {e}")
        sys.exit(1)

    tables = await conn.fetch(
        "SELECT table_name FROM information_schema.tables WHERE table_name IN ('users', 'parcels', 'parcel_tracking_points')"
    )
    await conn.close()
    print("✅ Connection Successful!")
    print(f"   Tables present: {sorted(row['table_name'] for row in tables) or 'none (start the app once)'}")
    sys.exit(0)


if __name__ == "__main__":
    asyncio.run(check_db())

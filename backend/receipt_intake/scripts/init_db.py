"""Initialize database tables (development helper; production runs Alembic)."""

import asyncio

from receipt_intake.core.database import dispose_engine, init_db


async def main():
    print("Initializing database tables...")
    await init_db()
    await dispose_engine()
    print("Database initialization complete!")

if __name__ == "__main__":
    asyncio.run(main())

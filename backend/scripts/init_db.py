"""
Initialize the database: create all tables.
Run with: python -m scripts.init_db
"""

import asyncio

from medtracker.config import get_settings
from medtracker.database import build_engine, create_tables


async def init():
    engine = build_engine(get_settings().database_url)
    print("Creating database tables...")
    await create_tables(engine)
    print("All tables created successfully.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init())

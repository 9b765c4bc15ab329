import asyncio
import asyncpg
import sys

from database import EVENT_TABLES, get_database_url


async def check():
    try:
        conn = await asyncpg.connect(get_database_url())
    except (OSError, asyncpg.PostgresError) as e:
        print(f"Connection failed: {e}")
        sys.exit(1)

    print("Successfully connected to database!")
    for category, table in EVENT_TABLES.items():
        exists = await conn.fetchval("SELECT to_regclass($1) IS NOT NULL", table)
        print(f"  {table:<20} {'ok' if exists else 'missing'} ({category.value})")
    await conn.close()
    sys.exit(0)

if __name__ == "__main__":
    asyncio.run(check())

"""Reset database and rate-limit counters to an empty state.

Drops and recreates every table from the ORM metadata, then deletes the
``rate_limit:*`` counters from Redis.

Usage:
    python -m scripts.reset_db
"""

import asyncio

from auction_house.core.database import Base, engine
from auction_house.core.redis import close_redis, get_redis
import auction_house.models  # noqa: F401  (registers tables on Base.metadata)


async def reset_database():
    """Drop and recreate all tables."""
    print("=" * 60)
    print("Resetting database to empty state...")
    print("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    for table in Base.metadata.sorted_tables:
        print(f"  Recreated {table.name}")
    print("\nDatabase reset successfully!")


async def reset_redis():
    """Delete rate-limit counters."""
    print("\nResetting Redis rate-limit counters...")

    try:
        redis = await get_redis()
        deleted = 0
        async for key in redis.scan_iter(match="rate_limit:*", count=500):
            deleted += await redis.delete(key)
        print(f"  Deleted {deleted} counters")
    except Exception as e:
        print(f"  Warning: Could not clear Redis: {e}")
        print("  (This is OK if Redis is not running locally)")
    finally:
        await close_redis()


async def main():
    await reset_database()
    await reset_redis()

    print("\n" + "=" * 60)
    print("Reset complete!")
    print("=" * 60)
    print("\nTo seed development data, run:")
    print("  python -m scripts.seed_data")
    print("=" * 60)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

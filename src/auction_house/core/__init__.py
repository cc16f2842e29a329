from auction_house.core.clock import Clock, DatabaseClock, FrozenClock
from auction_house.core.config import settings
from auction_house.core.database import Base, async_session_maker, engine, get_db
from auction_house.core.redis import close_redis, get_redis

__all__ = [
    "settings",
    "Base",
    "engine",
    "async_session_maker",
    "get_db",
    "get_redis",
    "close_redis",
    "Clock",
    "DatabaseClock",
    "FrozenClock",
]

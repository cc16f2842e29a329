"""API dependencies for database access, clock, services and shared-secret guards."""

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from auction_house.core.clock import Clock, DatabaseClock
from auction_house.core.config import settings
from auction_house.core.database import get_db
from auction_house.core.redis import get_redis
from auction_house.services.auction_service import AuctionService
from auction_house.services.bid_service import BidService
from auction_house.services.rate_limiter import RateLimiter
from auction_house.services.settlement_service import SettlementService
from auction_house.services.sweeper import ExpirationSweeper

admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)
cron_secret_header = APIKeyHeader(name="X-Cron-Secret", auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


def _matches(provided: str | None, expected: str) -> bool:
    return provided is not None and secrets.compare_digest(provided, expected)


async def require_admin(key: Annotated[str | None, Depends(admin_key_header)]) -> None:
    """Reject requests without the admin shared secret."""
    if not _matches(key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "Admin key required"},
        )


async def require_cron(secret: Annotated[str | None, Depends(cron_secret_header)]) -> None:
    """Reject sweep calls without the cron shared secret."""
    if not _matches(secret, settings.CRON_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "Cron secret required"},
        )


def get_client_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


async def get_clock(db: DbSession) -> Clock:
    """Datastore-backed clock bound to the request's session."""
    return DatabaseClock(db)


async def get_rate_limiter() -> RateLimiter:
    """Get RateLimiter with the shared Redis connection pool."""
    redis = await get_redis()
    return RateLimiter(redis)


ClockDep = Annotated[Clock, Depends(get_clock)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
ClientIp = Annotated[str, Depends(get_client_ip)]


async def get_auction_service(db: DbSession, clock: ClockDep) -> AuctionService:
    return AuctionService(db, clock)


async def get_bid_service(
    db: DbSession, clock: ClockDep, rate_limiter: RateLimiterDep
) -> BidService:
    return BidService(db, clock, rate_limiter)


async def get_settlement_service(db: DbSession, clock: ClockDep) -> SettlementService:
    return SettlementService(db, clock)


async def get_sweeper(db: DbSession, clock: ClockDep) -> ExpirationSweeper:
    return ExpirationSweeper(db, clock)


# Type aliases for cleaner dependency injection
AuctionServiceDep = Annotated[AuctionService, Depends(get_auction_service)]
BidServiceDep = Annotated[BidService, Depends(get_bid_service)]
SettlementServiceDep = Annotated[SettlementService, Depends(get_settlement_service)]
SweeperDep = Annotated[ExpirationSweeper, Depends(get_sweeper)]
AdminGuard = Depends(require_admin)
CronGuard = Depends(require_cron)

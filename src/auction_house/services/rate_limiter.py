"""Fixed-window rate limiting for bid submission, backed by Redis counters."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

from auction_house.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowRule:
    scope: str
    limit: int
    window_seconds: int


@dataclass
class RateLimitDecision:
    allowed: bool
    reasons: list[str] = field(default_factory=list)
    reset_at: datetime | None = None


def window_bucket(epoch_seconds: float, window_seconds: int) -> int:
    """Start of the fixed window containing ``epoch_seconds``."""
    return int(epoch_seconds // window_seconds) * window_seconds


class RateLimiter:
    """Three independent fixed-window counters gating bid submission.

    Keys: ``rate_limit:{scope}:[{auction_id}:]{identifier}:{bucket}``. Each
    counter expires on its own when its window closes, so stale counters
    never need an explicit sweep.
    """

    # INCR and set the expiry on the first hit in one atomic round trip
    INCREMENT_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 then
        redis.call('EXPIRE', KEYS[1], ARGV[1])
    end
    return count
    """

    def __init__(
        self,
        redis: Redis,
        ip_rule: WindowRule | None = None,
        user_rule: WindowRule | None = None,
        auction_rule: WindowRule | None = None,
    ):
        """Initialize the limiter.

        Args:
            redis: Async Redis client instance
            ip_rule: Per-IP limit (defaults from settings)
            user_rule: Per-user limit (defaults from settings)
            auction_rule: Per-(user-or-IP, auction) limit (defaults from settings)
        """
        self.redis = redis
        self.ip_rule = ip_rule or WindowRule(
            "ip", settings.RATE_LIMIT_IP, settings.RATE_LIMIT_IP_WINDOW
        )
        self.user_rule = user_rule or WindowRule(
            "user", settings.RATE_LIMIT_USER, settings.RATE_LIMIT_USER_WINDOW
        )
        self.auction_rule = auction_rule or WindowRule(
            "auction", settings.RATE_LIMIT_AUCTION, settings.RATE_LIMIT_AUCTION_WINDOW
        )
        self._increment_script = None

    async def _get_increment_script(self):
        """Get or register the counter increment Lua script."""
        if self._increment_script is None:
            self._increment_script = self.redis.register_script(self.INCREMENT_SCRIPT)
        return self._increment_script

    async def check_bid(
        self,
        ip: str,
        auction_id: UUID,
        now: datetime,
        user_id: UUID | None = None,
    ) -> RateLimitDecision:
        """Count one bid attempt against every applicable window.

        All windows are counted even when an earlier one already failed, so
        the decision carries the union of failure reasons. ``reset_at`` is the
        earliest moment one of the failing windows rolls over.

        Args:
            ip: Client IP address
            auction_id: Auction being bid on
            now: Authoritative current time (naive UTC)
            user_id: Authenticated user, if any

        Returns:
            RateLimitDecision
        """
        epoch = now.replace(tzinfo=timezone.utc).timestamp()
        identifier = str(user_id) if user_id else ip

        checks = [(self.ip_rule, ip)]
        if user_id is not None:
            checks.append((self.user_rule, str(user_id)))
        checks.append((self.auction_rule, f"{auction_id}:{identifier}"))

        reasons: list[str] = []
        resets: list[int] = []
        try:
            for rule, subject in checks:
                bucket = window_bucket(epoch, rule.window_seconds)
                count = await self._increment(rule, subject, bucket)
                if count > rule.limit:
                    reasons.append(f"{rule.scope}_rate_limit")
                    resets.append(bucket + rule.window_seconds)
        except RedisError as e:
            # Abuse mitigation only; an unavailable counter store must not block bidding
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return RateLimitDecision(allowed=True)

        if not reasons:
            return RateLimitDecision(allowed=True)

        reset_at = datetime.fromtimestamp(min(resets), tz=timezone.utc).replace(tzinfo=None)
        logger.warning(f"Rate limit hit for ip={ip} user={user_id} auction={auction_id}: {reasons}")
        return RateLimitDecision(allowed=False, reasons=reasons, reset_at=reset_at)

    async def _increment(self, rule: WindowRule, subject: str, bucket: int) -> int:
        key = f"rate_limit:{rule.scope}:{subject}:{bucket}"
        script = await self._get_increment_script()
        count = await script(keys=[key], args=[rule.window_seconds])
        return int(count)

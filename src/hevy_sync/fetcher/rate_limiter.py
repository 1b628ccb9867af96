"""Tracks the request budget the server advertises in rate-limit headers."""

from typing import Mapping, Optional

from hevy_sync.models.clock import Clock, WallClock
from hevy_sync.models.data_models import RateLimitBudget
from hevy_sync.storage.kv_store import KVStore, MemoryKVStore, TTLCache


RATE_LIMIT_CACHE_KEY = "RATE_LIMIT_INFO"

REMAINING_HEADER = "x-ratelimit-remaining"
LIMIT_HEADER = "x-ratelimit-limit"
RESET_HEADER = "x-ratelimit-reset"

# Reset values above this are absolute epoch seconds, below it seconds-from-now
EPOCH_RESET_CUTOFF = 1_000_000_000


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class RateLimitTracker:
    """
    Keeps the latest server-advertised budget in a short-TTL cache.

    An absent or expired budget means "unknown": callers still apply the
    default inter-request delay, they never treat unknown as unlimited.
    """

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        ttl_seconds: float = 600.0,
        throttle_ratio: float = 0.2,
        throttle_remaining: int = 50,
        default_delay: float = 0.05,
        throttle_delay: float = 0.1,
        clock: Optional[Clock] = None,
        logger: Optional['StructuredLogger'] = None
    ):
        """
        Initialize tracker.

        Args:
            cache: TTL cache the budget is persisted in (in-memory by default)
            ttl_seconds: How long an observed budget stays valid
            throttle_ratio: Throttle when remaining/limit drops below this
            throttle_remaining: Throttle when remaining drops below this
            default_delay: Delay between requests when not throttling
            throttle_delay: Delay between requests when throttling
            clock: Wall clock for observed_at / reset_at
            logger: Optional structured logger
        """
        self.clock = clock or WallClock()
        self.cache = cache or TTLCache(MemoryKVStore(), clock=self.clock)
        self.ttl_seconds = ttl_seconds
        self.throttle_ratio = throttle_ratio
        self.throttle_remaining = throttle_remaining
        self.default_delay = default_delay
        self.throttle_delay = throttle_delay
        self.logger = logger

    @staticmethod
    def extract(headers: Mapping[str, str]) -> Optional[dict]:
        """Pull remaining/limit/reset out of headers, matching names case-insensitively."""
        lowered = {str(k).lower(): v for k, v in headers.items()}
        remaining = _parse_int(lowered.get(REMAINING_HEADER))
        limit = _parse_int(lowered.get(LIMIT_HEADER))
        reset = _parse_int(lowered.get(RESET_HEADER))

        if remaining is None and limit is None and reset is None:
            return None
        return {"remaining": remaining, "limit": limit, "reset": reset}

    def observe(self, headers: Mapping[str, str]) -> Optional[RateLimitBudget]:
        """Record the budget carried by a response. No-op without rate-limit headers."""
        extracted = self.extract(headers)
        if extracted is None:
            return None

        observed_at = self.clock.now()
        reset = extracted["reset"]
        if reset is None:
            reset_at = None
        elif reset > EPOCH_RESET_CUTOFF:
            reset_at = float(reset)
        else:
            reset_at = observed_at + reset

        budget = RateLimitBudget(
            remaining=extracted["remaining"],
            limit=extracted["limit"],
            reset_at=reset_at,
            observed_at=observed_at,
        )
        self.cache.put(RATE_LIMIT_CACHE_KEY, budget.to_dict(), self.ttl_seconds)

        if (
            self.logger
            and budget.remaining is not None
            and budget.limit
            and budget.remaining / budget.limit < 0.1
        ):
            self.logger.rate_limit_low(budget.remaining, budget.limit)

        return budget

    def current_budget(self) -> Optional[RateLimitBudget]:
        cached = self.cache.get(RATE_LIMIT_CACHE_KEY)
        if not isinstance(cached, dict):
            return None
        try:
            return RateLimitBudget.from_dict(cached)
        except KeyError:
            return None

    def should_throttle(self) -> bool:
        """True when the remaining budget is below 20% of the limit or under 50 requests."""
        budget = self.current_budget()
        if budget is None or budget.remaining is None:
            return False
        if budget.remaining < self.throttle_remaining:
            return True
        if budget.limit:
            return budget.remaining / budget.limit < self.throttle_ratio
        return False

    def delay_before_next_request(self) -> float:
        return self.throttle_delay if self.should_throttle() else self.default_delay

    def clear(self) -> None:
        self.cache.remove(RATE_LIMIT_CACHE_KEY)

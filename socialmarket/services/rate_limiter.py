"""Fixed-window rate limiting on top of the ``limits`` library.

Each identifier gets a counter that lives for one window. The first call in
a window opens it and is allowed; later calls are allowed while the count is
below the limit and denied (without touching the counter) once it is
reached. Expired windows are dropped by the in-memory storage itself.

Bursts straddling a window boundary can reach ~2x the limit, and the
test-then-hit in allow() is not atomic across threads sharing one
identifier. Both are accepted for abuse deterrence; do not use this for
metering.
"""

import logging
import math
import time
from collections import namedtuple

from flask import g, request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

RateLimitTier = namedtuple("RateLimitTier", ["limit", "window_ms"])

RateLimitResult = namedtuple(
    "RateLimitResult", ["allowed", "limit", "remaining", "reset_seconds"]
)

DEFAULT_TIER = RateLimitTier(limit=10, window_ms=60_000)


def caller_key():
    """Flask-Limiter key: the resolved user id, else the client IP."""
    return g.get("user_id") or request.remote_addr or "unknown"


def _window_seconds(tier):
    return max(1, math.ceil(tier.window_ms / 1000))


def rate_limit_item(tier):
    """The ``limits`` item for a tier (windows round up to whole seconds)."""
    return RateLimitItemPerSecond(tier.limit, _window_seconds(tier))


class RateLimiter:
    """Named tiers over one owned ``MemoryStorage``.

    Every instance has its own storage, so tests can build isolated
    limiters next to the app-wide one.
    """

    def __init__(self, tiers=None):
        self.storage = MemoryStorage()
        self.strategy = FixedWindowRateLimiter(self.storage)
        self.tiers = {}
        for name, tier in (tiers or {}).items():
            self.add_tier(name, *tier)

    def init_app(self, app):
        for name, (limit, window_ms) in app.config.get("RATE_LIMIT_TIERS", {}).items():
            self.add_tier(name, limit, window_ms)
        app.extensions["rate_limiter"] = self

    def add_tier(self, name, limit, window_ms):
        if limit < 1 or window_ms <= 0:
            raise ValueError(f"Invalid rate limit tier {name!r}: {limit}/{window_ms}ms")
        self.tiers[name] = RateLimitTier(int(limit), int(window_ms))

    def get_tier(self, name):
        tier = self.tiers.get(name)
        if tier is None:
            raise KeyError(f"Unknown rate limit tier: {name}")
        return tier

    def limit_value(self, name):
        """Tier as a Flask-Limiter limit string, e.g. ``"5 per 60 seconds"``."""
        tier = self.get_tier(name)
        return f"{tier.limit} per {_window_seconds(tier)} seconds"

    # ──────────────────────────────────────────────
    # Core fixed-window operations
    # ──────────────────────────────────────────────

    def allow(self, identifier, tier=DEFAULT_TIER):
        """Return True if the call fits in the identifier's current window."""
        item = rate_limit_item(tier)
        if not self.strategy.test(item, identifier):
            return False
        return self.strategy.hit(item, identifier)

    def remaining(self, identifier, tier=DEFAULT_TIER):
        stats = self.strategy.get_window_stats(rate_limit_item(tier), identifier)
        return stats.remaining

    def reset_seconds(self, identifier, tier=DEFAULT_TIER):
        """Whole seconds until the window closes; 0 when none is open."""
        stats = self.strategy.get_window_stats(rate_limit_item(tier), identifier)
        return max(0, math.ceil(stats.reset_time - time.time()))

    def hit(self, tier_name, identifier):
        """Count one request against a named tier for ``identifier``.

        Tiers are tracked independently: the same caller has a separate
        window per tier.
        """
        tier = self.get_tier(tier_name)
        key = f"{tier_name}:{identifier}"
        allowed = self.allow(key, tier)
        return RateLimitResult(
            allowed=allowed,
            limit=tier.limit,
            remaining=self.remaining(key, tier),
            reset_seconds=self.reset_seconds(key, tier),
        )

    def usage(self, tier_name, identifier):
        """Remaining budget for ``identifier`` in a named tier, without charging it."""
        return self.remaining(f"{tier_name}:{identifier}", self.get_tier(tier_name))

    def reset(self):
        self.storage.reset()

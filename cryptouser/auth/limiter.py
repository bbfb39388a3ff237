"""Sliding-quota rate limiting for cryptouser endpoints.

Each ``QuotaLimiter`` tracks, per key, the remaining quota measured in
minutes of window. A key starts with ``capacity * window_minutes`` units; a
charge (``use``) costs ``window_minutes`` units; every tick (one per minute of
wall-clock time) refunds one unit to every tracked key. A key that climbs
back to full quota is forgotten, which is indistinguishable from never having
been seen.

Two usage patterns are built on top of this in ``cryptouser.api.router``:

  - flat limiting:         check, then use unconditionally (create, get_public)
  - failure-only limiting: check, and use only after a failed credential check
                           (get_protected, update, delete)

The tick is driven by ``Replenisher``, an asyncio task owned by the app
lifespan and cancelled on shutdown.

The limiter instances are created in ``cryptouser.main`` and shared between:
  - cryptouser/api/router.py  (request.app.state.limiters)
  - cryptouser/health.py      (tracked-key counts)
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

from cryptouser.config import LimitsConfig
from cryptouser.utils.logger import get_logger

logger = get_logger(__name__)


class QuotaLimiter:
    """Per-key quota counter with minute-granularity replenishment.

    All accessors hold ``_lock`` so concurrent charges and the replenishment
    tick never lose an update.
    """

    def __init__(self, capacity: int, window_minutes: int) -> None:
        if capacity <= 0 or window_minutes <= 0:
            raise ValueError("capacity and window_minutes must be positive")
        self.capacity = capacity
        self.window_minutes = window_minutes
        self._remaining: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def full_quota(self) -> int:
        return self.capacity * self.window_minutes

    def check(self, key: str) -> bool:
        """Return True if ``key`` can afford one more charge. No side effects."""
        with self._lock:
            remaining = self._remaining.get(key)
            if remaining is None:
                return True
            return remaining >= self.window_minutes

    def use(self, key: str) -> None:
        """Charge one window unit to ``key``."""
        with self._lock:
            remaining = self._remaining.get(key, self.full_quota)
            self._remaining[key] = remaining - self.window_minutes

    def tick(self) -> None:
        """Refund one unit to every tracked key; forget keys back at full quota."""
        with self._lock:
            for key in list(self._remaining):
                self._remaining[key] += 1
                if self._remaining[key] >= self.full_quota:
                    del self._remaining[key]

    def remaining(self, key: str) -> int:
        """Remaining quota units for ``key`` (full quota if untracked)."""
        with self._lock:
            return self._remaining.get(key, self.full_quota)

    def tracked(self) -> int:
        """Number of keys currently below full quota."""
        with self._lock:
            return len(self._remaining)

    def reset(self) -> None:
        with self._lock:
            self._remaining.clear()


@dataclass
class LimiterSet:
    """The four limiters the API consults.

    create_user: flat, keyed by client address
    get_public:  flat, keyed by client address
    auth_ip:     failure-only, keyed by client address
    auth_user:   failure-only, keyed by identity
    """

    create_user: QuotaLimiter
    get_public: QuotaLimiter
    auth_ip: QuotaLimiter
    auth_user: QuotaLimiter

    @classmethod
    def from_config(cls, limits: LimitsConfig) -> "LimiterSet":
        return cls(
            create_user=QuotaLimiter(limits.create_user.capacity, limits.create_user.window_minutes),
            get_public=QuotaLimiter(limits.get_public.capacity, limits.get_public.window_minutes),
            auth_ip=QuotaLimiter(limits.auth_ip.capacity, limits.auth_ip.window_minutes),
            auth_user=QuotaLimiter(limits.auth_user.capacity, limits.auth_user.window_minutes),
        )

    def items(self) -> Iterator[tuple[str, QuotaLimiter]]:
        yield "create_user", self.create_user
        yield "get_public", self.get_public
        yield "auth_ip", self.auth_ip
        yield "auth_user", self.auth_user

    def tick(self) -> None:
        for _, limiter in self.items():
            limiter.tick()

    def reset(self) -> None:
        for _, limiter in self.items():
            limiter.reset()


class Replenisher:
    """Periodic task that ticks every limiter in a ``LimiterSet``.

    Lifecycle (owned by the app lifespan):
        replenisher = Replenisher(limiters, interval_s=60)
        replenisher.start()
        ...
        await replenisher.stop()
    """

    def __init__(self, limiters: LimiterSet, interval_s: float) -> None:
        self.limiters = limiters
        self.interval_s = interval_s
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="limiter-replenisher")
        logger.info("Limiter replenisher started", interval_s=self.interval_s)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Limiter replenisher stopped")

    def tick_now(self) -> None:
        """Run one replenishment pass immediately."""
        self.limiters.tick()
        logger.debug(
            "Limiter quotas replenished",
            tracked={name: limiter.tracked() for name, limiter in self.limiters.items()},
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self.tick_now()

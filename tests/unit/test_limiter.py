"""Unit tests for cryptouser/auth/limiter.py.

Covers:
  - QuotaLimiter: check/use/tick arithmetic, forgetting replenished keys,
    purity of check(), concurrency (no lost updates)
  - LimiterSet: construction from config, tick/reset fan-out
  - Replenisher: periodic ticking, start/stop lifecycle
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from cryptouser.auth.limiter import LimiterSet, QuotaLimiter, Replenisher
from cryptouser.config import LimitsConfig, QuotaConfig


class TestQuotaLimiter:
    """Tests for QuotaLimiter."""

    def test_unseen_key_is_allowed(self) -> None:
        limiter = QuotaLimiter(5, 10)
        assert limiter.check("1.2.3.4") is True
        assert limiter.remaining("1.2.3.4") == 50

    def test_check_has_no_side_effect(self) -> None:
        limiter = QuotaLimiter(5, 10)
        for _ in range(20):
            limiter.check("k")
        assert limiter.tracked() == 0

    def test_use_charges_one_window(self) -> None:
        limiter = QuotaLimiter(5, 10)
        limiter.use("k")
        assert limiter.remaining("k") == 40
        assert limiter.tracked() == 1

    def test_exhausted_after_capacity_uses(self) -> None:
        limiter = QuotaLimiter(5, 10)
        for _ in range(4):
            limiter.use("k")
            assert limiter.check("k") is True
        limiter.use("k")
        assert limiter.remaining("k") == 0
        assert limiter.check("k") is False

    def test_keys_are_independent(self) -> None:
        limiter = QuotaLimiter(1, 1)
        limiter.use("a")
        assert limiter.check("a") is False
        assert limiter.check("b") is True

    def test_tick_refunds_one_unit(self) -> None:
        limiter = QuotaLimiter(5, 10)
        for _ in range(5):
            limiter.use("k")
        limiter.tick()
        assert limiter.remaining("k") == 1
        assert limiter.check("k") is False

    def test_full_window_of_ticks_restores_one_charge(self) -> None:
        limiter = QuotaLimiter(5, 10)
        for _ in range(5):
            limiter.use("k")
        for _ in range(10):
            limiter.tick()
        assert limiter.remaining("k") == 10
        assert limiter.check("k") is True

    def test_replenished_key_is_forgotten(self) -> None:
        limiter = QuotaLimiter(5, 10)
        limiter.use("k")
        for _ in range(9):
            limiter.tick()
        assert limiter.tracked() == 1
        limiter.tick()
        assert limiter.tracked() == 0
        assert limiter.remaining("k") == 50

    def test_use_beyond_exhaustion_goes_negative(self) -> None:
        limiter = QuotaLimiter(1, 1)
        limiter.use("k")
        limiter.use("k")
        assert limiter.remaining("k") == -1

    def test_reset_forgets_all(self) -> None:
        limiter = QuotaLimiter(2, 1)
        limiter.use("a")
        limiter.use("b")
        limiter.reset()
        assert limiter.tracked() == 0

    @pytest.mark.parametrize("capacity,window", [(0, 1), (1, 0), (-1, 5)])
    def test_rejects_non_positive_parameters(self, capacity: int, window: int) -> None:
        with pytest.raises(ValueError):
            QuotaLimiter(capacity, window)

    def test_concurrent_uses_are_not_lost(self) -> None:
        limiter = QuotaLimiter(10_000, 1)
        threads_n, per_thread = 8, 500

        def worker() -> None:
            for _ in range(per_thread):
                limiter.use("shared")

        threads = [threading.Thread(target=worker) for _ in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert limiter.remaining("shared") == 10_000 - threads_n * per_thread


class TestLimiterSet:
    """Tests for LimiterSet."""

    def test_defaults_from_config(self) -> None:
        limiters = LimiterSet.from_config(LimitsConfig())
        assert (limiters.create_user.capacity, limiters.create_user.window_minutes) == (50, 1)
        assert (limiters.get_public.capacity, limiters.get_public.window_minutes) == (50, 1)
        assert (limiters.auth_ip.capacity, limiters.auth_ip.window_minutes) == (50, 1)
        assert (limiters.auth_user.capacity, limiters.auth_user.window_minutes) == (5, 10)

    def test_custom_config(self) -> None:
        limits = LimitsConfig(auth_user=QuotaConfig(capacity=3, window_minutes=2))
        limiters = LimiterSet.from_config(limits)
        assert limiters.auth_user.full_quota == 6

    def test_limiters_are_distinct_instances(self) -> None:
        limiters = LimiterSet.from_config(LimitsConfig())
        names = [name for name, _ in limiters.items()]
        assert names == ["create_user", "get_public", "auth_ip", "auth_user"]
        assert len({id(limiter) for _, limiter in limiters.items()}) == 4

    def test_tick_reaches_every_limiter(self) -> None:
        limiters = LimiterSet.from_config(LimitsConfig())
        for _, limiter in limiters.items():
            limiter.use("k")
        limiters.tick()
        assert limiters.create_user.remaining("k") == 50
        assert limiters.auth_user.remaining("k") == 41

    def test_reset(self) -> None:
        limiters = LimiterSet.from_config(LimitsConfig())
        limiters.auth_ip.use("k")
        limiters.reset()
        assert limiters.auth_ip.tracked() == 0


class TestReplenisher:
    """Tests for Replenisher."""

    async def test_ticks_periodically(self) -> None:
        limiters = LimiterSet.from_config(LimitsConfig())
        for _ in range(5):
            limiters.auth_user.use("victim")
        replenisher = Replenisher(limiters, interval_s=0.01)
        replenisher.start()
        try:
            await asyncio.sleep(0.1)
        finally:
            await replenisher.stop()
        assert limiters.auth_user.remaining("victim") > 0

    async def test_stop_cancels_task(self) -> None:
        replenisher = Replenisher(LimiterSet.from_config(LimitsConfig()), interval_s=60)
        replenisher.start()
        assert replenisher.running is True
        await replenisher.stop()
        assert replenisher.running is False

    async def test_stop_without_start_is_noop(self) -> None:
        replenisher = Replenisher(LimiterSet.from_config(LimitsConfig()), interval_s=60)
        await replenisher.stop()
        assert replenisher.running is False

    async def test_start_twice_keeps_single_task(self) -> None:
        replenisher = Replenisher(LimiterSet.from_config(LimitsConfig()), interval_s=60)
        replenisher.start()
        first = replenisher._task
        replenisher.start()
        assert replenisher._task is first
        await replenisher.stop()

    async def test_no_ticks_after_stop(self) -> None:
        limiters = LimiterSet.from_config(LimitsConfig())
        replenisher = Replenisher(limiters, interval_s=0.01)
        replenisher.start()
        await replenisher.stop()
        limiters.auth_ip.use("k")
        await asyncio.sleep(0.05)
        assert limiters.auth_ip.remaining("k") == 49

    def test_tick_now(self) -> None:
        limiters = LimiterSet.from_config(LimitsConfig())
        limiters.get_public.use("k")
        Replenisher(limiters, interval_s=60).tick_now()
        assert limiters.get_public.tracked() == 0

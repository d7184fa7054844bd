"""Unit tests for agent_handoff_coordinator.health."""
from __future__ import annotations

from datetime import timedelta

import pytest

from agent_handoff_coordinator.config import RateLimitConfig
from agent_handoff_coordinator.errors import RateLimitExceededError
from agent_handoff_coordinator.health import HealthMonitor, RateLimiter
from agent_handoff_coordinator.session.state import Session

from tests.support import FakeClock


class TestRateLimiter:
    @pytest.fixture()
    def limiter(self) -> RateLimiter:
        return RateLimiter(RateLimitConfig(requests_per_window=2, window_seconds=60))

    def test_counts_down(self, limiter: RateLimiter, clock: FakeClock) -> None:
        session = Session()
        assert limiter.hit(session, clock()) == 1
        assert session.rate_limit.limit_reached is False
        assert limiter.hit(session, clock()) == 0
        assert session.rate_limit.limit_reached is True
        assert session.rate_limit.reset_at == clock() + timedelta(seconds=60)

    def test_exhausted_window_raises(self, limiter: RateLimiter, clock: FakeClock) -> None:
        session = Session(session_id="busy")
        limiter.hit(session, clock())
        limiter.hit(session, clock())
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.hit(session, clock())
        assert exc_info.value.reset_at == clock() + timedelta(seconds=60)
        assert exc_info.value.retryable is True
        assert session.rate_limit.request_count == 2

    def test_window_rolls_over(self, limiter: RateLimiter, clock: FakeClock) -> None:
        session = Session()
        limiter.hit(session, clock())
        limiter.hit(session, clock())
        clock.advance(seconds=60)
        assert limiter.hit(session, clock()) == 1
        assert session.rate_limit.window_started_at == clock()

    def test_remaining_without_hits(self, limiter: RateLimiter, clock: FakeClock) -> None:
        session = Session()
        assert limiter.remaining(session, clock()) == 2
        limiter.hit(session, clock())
        assert limiter.remaining(session, clock()) == 1
        assert limiter.remaining(session, clock() + timedelta(minutes=5)) == 2


class TestHealthMonitor:
    @pytest.fixture()
    def monitor(self) -> HealthMonitor:
        return HealthMonitor(latency_target_ms=2000.0)

    def test_fast_successes_score_full(self, monitor: HealthMonitor, clock: FakeClock) -> None:
        session = Session()
        monitor.record_success(session, 1000.0, clock())
        monitor.record_success(session, 3000.0, clock())
        assert session.health.average_latency_ms == 2000.0
        assert session.health.performance_score == 1.0
        assert session.health.error_rate == 0.0

    def test_slow_latency_lowers_score(self, monitor: HealthMonitor, clock: FakeClock) -> None:
        session = Session()
        monitor.record_success(session, 4000.0, clock())
        assert session.health.performance_score == 0.5

    def test_failures_raise_error_rate(self, monitor: HealthMonitor, clock: FakeClock) -> None:
        session = Session()
        monitor.record_success(session, 1000.0, clock())
        monitor.record_success(session, 3000.0, clock())
        monitor.record_failure(session, clock())
        assert session.health.error_count == 1
        assert session.health.error_rate == 0.3333
        assert session.health.performance_score == 0.6667

    def test_average_ignores_failures(self, monitor: HealthMonitor, clock: FakeClock) -> None:
        session = Session()
        monitor.record_failure(session, clock())
        monitor.record_success(session, 1500.0, clock())
        assert session.health.average_latency_ms == 1500.0
        assert session.health.request_count == 2
        assert session.health.performance_score == 0.5

    def test_heartbeat(self, monitor: HealthMonitor, clock: FakeClock) -> None:
        session = Session()
        session.health.is_active = False
        clock.advance(minutes=3)
        monitor.heartbeat(session, clock())
        assert session.health.last_heartbeat == clock()
        assert session.health.is_active is True

    def test_invalid_target(self) -> None:
        with pytest.raises(ValueError):
            HealthMonitor(latency_target_ms=0)

"""Per-session request window and liveness signals.

Classes
-------
- RateLimiter    — fixed-window request counter
- HealthMonitor  — heartbeat, error rate and a 0–1 performance score
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from agent_handoff_coordinator.config import RateLimitConfig
from agent_handoff_coordinator.errors import RateLimitExceededError
from agent_handoff_coordinator.session.state import Session

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter stored on the session.

    Parameters
    ----------
    config:
        Window length and allowance.  Defaults to 60 requests per hour.
    """

    def __init__(self, config: RateLimitConfig | None = None) -> None:
        self._config = config or RateLimitConfig()

    def _roll_window(self, session: Session, now: datetime) -> datetime:
        info = session.rate_limit
        if info.reset_at is None or now >= info.reset_at:
            info.window_started_at = now
            info.reset_at = now + timedelta(seconds=self._config.window_seconds)
            info.request_count = 0
            info.limit_reached = False
            info.remaining_requests = self._config.requests_per_window
        return info.reset_at

    def remaining(self, session: Session, now: datetime) -> int:
        """Return the allowance left in the window containing ``now``."""
        info = session.rate_limit
        if info.reset_at is None or now >= info.reset_at:
            return self._config.requests_per_window
        return max(self._config.requests_per_window - info.request_count, 0)

    def hit(self, session: Session, now: datetime) -> int:
        """Count one request against the session's window.

        Returns
        -------
        int
            Requests remaining in the window after this one.

        Raises
        ------
        RateLimitExceededError
            If the window's allowance is already spent.
        """
        reset_at = self._roll_window(session, now)
        info = session.rate_limit
        limit = self._config.requests_per_window
        if info.request_count >= limit:
            info.limit_reached = True
            info.remaining_requests = 0
            logger.warning(
                "RateLimiter: session %s exhausted %d requests; resets at %s",
                session.session_id,
                limit,
                reset_at,
            )
            raise RateLimitExceededError(session.session_id, reset_at)
        info.request_count += 1
        info.remaining_requests = limit - info.request_count
        info.limit_reached = info.request_count >= limit
        return info.remaining_requests


class HealthMonitor:
    """Maintain the liveness record of a session.

    ``performance_score = (1 - error_rate) * latency_factor`` where
    ``latency_factor`` is 1.0 while the average latency is at or below
    ``latency_target_ms`` and falls off proportionally above it.
    """

    def __init__(self, latency_target_ms: float = 2000.0) -> None:
        if latency_target_ms <= 0:
            raise ValueError("latency_target_ms must be positive.")
        self._latency_target_ms = latency_target_ms

    def heartbeat(self, session: Session, now: datetime) -> None:
        session.health.last_heartbeat = now
        session.health.is_active = True

    def record_success(self, session: Session, latency_ms: float, now: datetime) -> None:
        health = session.health
        successes_before = health.request_count - health.error_count
        health.average_latency_ms = round(
            (health.average_latency_ms * successes_before + max(latency_ms, 0.0))
            / (successes_before + 1),
            3,
        )
        health.request_count += 1
        self._recompute(session)
        self.heartbeat(session, now)

    def record_failure(self, session: Session, now: datetime) -> None:
        health = session.health
        health.request_count += 1
        health.error_count += 1
        self._recompute(session)
        self.heartbeat(session, now)

    def _recompute(self, session: Session) -> None:
        health = session.health
        health.error_rate = (
            round(health.error_count / health.request_count, 4) if health.request_count else 0.0
        )
        if health.average_latency_ms <= self._latency_target_ms:
            latency_factor = 1.0
        else:
            latency_factor = self._latency_target_ms / health.average_latency_ms
        health.performance_score = round((1.0 - health.error_rate) * latency_factor, 4)


__all__ = ["HealthMonitor", "RateLimiter"]

"""Test doubles and factories shared across the suite."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from agent_handoff_coordinator.session.state import (
    ProductAnalysis,
    Session,
    Topic,
    TopicStatus,
)


class FakeClock:
    """Manually advanced UTC clock, millisecond precision."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_analysis(confidence: float = 0.87, **sections: dict) -> ProductAnalysis:
    return ProductAnalysis(
        product_name="Trail Runner X",
        category="sports-outdoors",
        confidence=confidence,
        summary="Lightweight trail running shoe.",
        sections=sections
        or {
            "targetAudience": {"primary": "trail runners"},
            "positioning": {"valueProposition": "grip on any terrain"},
        },
    )


def make_session(
    completed: int = 0,
    *,
    analysis: ProductAnalysis | None = None,
    session_id: str = "sess-1",
) -> Session:
    """Return a session with the first ``completed`` topics completed."""
    session = Session(session_id=session_id)
    for index, topic in enumerate(Topic):
        if index < completed:
            session.conversation.topics[topic] = TopicStatus.COMPLETED
    session.product.analysis = analysis
    return session

"""Conversational topic tracking."""
from __future__ import annotations

from agent_handoff_coordinator.topics.tracker import (
    TopicProgressTracker,
    follow_up_questions,
    topic_keywords,
)

__all__ = ["TopicProgressTracker", "follow_up_questions", "topic_keywords"]

"""Topic classification and forward-only topic progress.

Classification is a keyword heuristic: each topic has a short keyword
list and the first topic (in canonical order) with a matching keyword
wins.  Text that matches nothing is attributed to
``TopicProgressTracker.FALLBACK_TOPIC``.  The heuristic has no notion of
confidence or intent and misattributes anything phrased without the
expected vocabulary.

Classes
-------
- TopicProgressTracker  — classify turns, advance topics, pick follow-ups
"""
from __future__ import annotations

import logging
import re
from typing import assert_never

from agent_handoff_coordinator.session.state import Session, Topic, TopicStatus

logger = logging.getLogger(__name__)


def topic_keywords(topic: Topic) -> tuple[str, ...]:
    """Return the classification keywords for ``topic``."""
    match topic:
        case Topic.PRODUCT_FEATURES:
            return ("feature", "benefit", "function", "unique", "special")
        case Topic.TARGET_AUDIENCE:
            return ("customer", "user", "audience", "demographic", "age")
        case Topic.BRAND_POSITIONING:
            return ("brand", "position", "competitive", "advantage", "different")
        case Topic.VISUAL_PREFERENCES:
            return ("visual", "style", "look", "design", "color", "mood")
        case _:
            assert_never(topic)


def follow_up_questions(topic: Topic) -> tuple[str, ...]:
    """Return suggested follow-up questions for ``topic``."""
    match topic:
        case Topic.PRODUCT_FEATURES:
            return (
                "What makes this product unique?",
                "What's the main problem it solves?",
            )
        case Topic.TARGET_AUDIENCE:
            return (
                "Who is your ideal customer?",
                "What age group are you targeting?",
            )
        case Topic.BRAND_POSITIONING:
            return (
                "How do you want customers to feel about your brand?",
                "What sets you apart from competitors?",
            )
        case Topic.VISUAL_PREFERENCES:
            return (
                "What visual style fits your brand?",
                "Any colors or moods you want in the commercial?",
            )
        case _:
            assert_never(topic)


def _compile(keywords: tuple[str, ...]) -> re.Pattern[str]:
    # Whole words plus common inflections; "age" must not match "image" or "agent".
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"\b(?:{alternatives})(?:s|es|ing|ed|al|ly)?\b", re.IGNORECASE)


_PATTERNS: dict[Topic, re.Pattern[str]] = {
    topic: _compile(topic_keywords(topic)) for topic in Topic
}


class TopicProgressTracker:
    """Classify conversational turns and advance topic status.

    Topic status only ever moves ``pending -> in_progress -> completed``.
    All methods that take a session mutate it in place; persisting the
    change is the caller's job.
    """

    FALLBACK_TOPIC: Topic = Topic.PRODUCT_FEATURES

    def classify(self, text: str) -> Topic:
        """Return the topic ``text`` is about.

        Deterministic.  Topics are tried in canonical order; when no keyword
        matches, :attr:`FALLBACK_TOPIC` is returned.
        """
        for topic in Topic:
            if _PATTERNS[topic].search(text):
                return topic
        logger.debug(
            "TopicProgressTracker: no keyword match, falling back to %s",
            self.FALLBACK_TOPIC.value,
        )
        return self.FALLBACK_TOPIC

    def matches(self, text: str) -> list[Topic]:
        """Return every topic with at least one keyword in ``text``."""
        return [topic for topic in Topic if _PATTERNS[topic].search(text)]

    def advance(self, session: Session, topic: Topic) -> TopicStatus:
        """Move ``topic`` one step forward and make it the current topic.

        Re-advancing a completed topic is a no-op.

        Returns
        -------
        TopicStatus
            The topic's status after the call.
        """
        topics = session.conversation.topics
        current = topics[topic]
        match current:
            case TopicStatus.PENDING:
                new_status = TopicStatus.IN_PROGRESS
            case TopicStatus.IN_PROGRESS:
                new_status = TopicStatus.COMPLETED
            case TopicStatus.COMPLETED:
                new_status = TopicStatus.COMPLETED
            case _:
                assert_never(current)
        topics[topic] = new_status
        session.conversation.current_topic = topic
        if new_status is not current:
            logger.debug(
                "TopicProgressTracker: session %s topic %s %s -> %s",
                session.session_id,
                topic.value,
                current.value,
                new_status.value,
            )
        return new_status

    def next_pending(self, session: Session) -> Topic | None:
        """Return the first topic in canonical order that is still pending."""
        for topic, status in session.conversation.topics.items():
            if status is TopicStatus.PENDING:
                return topic
        return None

    def completed_ratio(self, session: Session) -> float:
        return len(session.conversation.completed_topics()) / len(Topic)

    def suggestions(self, session: Session) -> tuple[str, ...]:
        """Follow-up questions for the next pending topic, if any."""
        topic = self.next_pending(session)
        if topic is None:
            return ()
        return follow_up_questions(topic)


__all__ = ["TopicProgressTracker", "follow_up_questions", "topic_keywords"]

"""Plain-text prompt construction from session context."""
from __future__ import annotations

from typing import Sequence

from agent_handoff_coordinator.session.state import (
    ChatMessage,
    MessageType,
    Session,
    TopicStatus,
)
from agent_handoff_coordinator.topics.tracker import follow_up_questions

HISTORY_WINDOW = 10

_CATEGORIES = (
    "electronics",
    "fashion",
    "food-beverage",
    "home-garden",
    "health-beauty",
    "sports-outdoors",
    "automotive",
    "other",
)

_ANALYSIS_SCHEMA = """{
  "productName": "product name",
  "category": "one of the categories listed above",
  "confidence": 0.0,
  "summary": "one or two sentence description",
  "sections": {
    "product": {"keyFeatures": [], "materials": [], "usageContext": []},
    "targetAudience": {"primary": "", "interests": []},
    "positioning": {"brandPersonality": "", "valueProposition": ""},
    "visualPreferences": {"style": "", "palette": [], "mood": ""},
    "commercialStrategy": {"keyMessages": [], "callToAction": ""}
  }
}"""


def _language_instruction(locale: str) -> str:
    if locale == "ja":
        return "Respond in Japanese."
    return "Respond in English."


def build_analysis_prompt(session: Session) -> str:
    """Prompt for the structured product analysis of an uploaded product."""
    product = session.product
    lines = [
        "You are a product marketing expert analyzing a product for commercial video creation.",
        "",
    ]
    if product.original_filename:
        lines.append(f"PRODUCT FILE: {product.original_filename}")
    if product.initial_description:
        lines.append(f"ADDITIONAL CONTEXT: {product.initial_description}")
    lines += [
        "",
        f"CATEGORIES: {', '.join(_CATEGORIES)}",
        "Return only JSON with this structure. 'confidence' is your overall "
        "confidence in the analysis between 0 and 1:",
        _ANALYSIS_SCHEMA,
        "",
        _language_instruction(session.user.locale),
    ]
    return "\n".join(lines)


def build_turn_prompt(
    session: Session,
    history: Sequence[ChatMessage],
    message: str,
) -> str:
    """Prompt for one conversational reply from the current agent."""
    conversation = session.conversation
    completed = [t.value for t, s in conversation.topics.items() if s is TopicStatus.COMPLETED]
    pending = [t.value for t, s in conversation.topics.items() if s is not TopicStatus.COMPLETED]

    lines = [
        f"You are the {session.current_agent.display_name} agent helping a user plan a "
        "product commercial.",
        f"Style: {session.user.preferences.communication_style}, "
        f"{session.user.preferences.detail_level}.",
    ]
    analysis = session.product.analysis
    if analysis is not None:
        lines.append(f"Product: {analysis.product_name} ({analysis.category}). {analysis.summary}")
    lines.append(f"Topics covered: {', '.join(completed) or 'none'}.")
    lines.append(f"Topics still open: {', '.join(pending) or 'none'}.")
    if conversation.key_insights:
        lines.append("Key insights so far:")
        lines += [f"- {insight}" for insight in conversation.key_insights[-5:]]

    recent = list(history)[-HISTORY_WINDOW:]
    if recent:
        lines.append("")
        lines.append("Conversation so far:")
        for entry in recent:
            speaker = "User" if entry.type is MessageType.USER else "Assistant"
            lines.append(f"{speaker}: {entry.content}")

    lines += ["", f"User: {message}", ""]
    for topic, status in conversation.topics.items():
        if status is TopicStatus.PENDING:
            lines.append(f"If natural, ask one follow-up such as: {follow_up_questions(topic)[0]}")
            break
    lines.append(_language_instruction(session.user.locale))
    return "\n".join(lines)


__all__ = ["HISTORY_WINDOW", "build_analysis_prompt", "build_turn_prompt"]

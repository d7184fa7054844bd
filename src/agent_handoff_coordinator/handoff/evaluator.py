"""Handoff readiness and pre-transfer validation.

Both checks are pure functions of a :class:`Session`.  ``is_ready`` may be
polled after every turn; ``validate`` runs at the moment of handoff and
always returns a :class:`ValidationResult` instead of raising.

Classes
-------
- HandoffReadinessEvaluator  — readiness formula and handoff validation
"""
from __future__ import annotations

from agent_handoff_coordinator.config import HandoffConfig
from agent_handoff_coordinator.handoff.audit import ValidationResult
from agent_handoff_coordinator.session.state import (
    AgentRole,
    Session,
    Topic,
    TopicStatus,
)

_REQUIRED_ANALYSIS_SECTIONS: tuple[str, ...] = ("targetAudience", "positioning")


class HandoffReadinessEvaluator:
    """Decide whether a session may be handed to the next agent.

    Parameters
    ----------
    config:
        Supplies the completion ratio and the confidence thresholds.
        Defaults to ``HandoffConfig()``.
    """

    def __init__(self, config: HandoffConfig | None = None) -> None:
        self._config = config or HandoffConfig()

    @property
    def config(self) -> HandoffConfig:
        return self._config

    @staticmethod
    def has_analysis(session: Session) -> bool:
        return session.has_analysis()

    @staticmethod
    def completed_ratio(session: Session) -> float:
        return len(session.conversation.completed_topics()) / len(Topic)

    def is_ready(self, session: Session) -> bool:
        """Return True iff an analysis exists and enough topics are completed."""
        return self.has_analysis(session) and (
            self.completed_ratio(session) >= self._config.completion_ratio
        )

    def validate(
        self,
        session: Session,
        target: AgentRole | None = None,
    ) -> ValidationResult:
        """Check that ``session`` can be handed to ``target``.

        Parameters
        ----------
        session:
            The session about to be handed off.
        target:
            The receiving agent.  Defaults to the successor of
            ``session.current_agent``.

        Returns
        -------
        ValidationResult
            ``is_valid`` is False when any blocking error was found.
        """
        errors: list[str] = []
        warnings: list[str] = []
        cfg = self._config

        expected = session.current_agent.successor
        if target is None:
            target = expected
        if expected is None:
            errors.append(
                f"{session.current_agent.display_name} is the final agent; "
                "there is no one to hand off to."
            )
        elif target is not expected:
            errors.append(
                f"Cannot hand off from {session.current_agent.value} to {target.value}; "
                f"the next agent is {expected.value}."
            )

        if session.status.is_terminal:
            errors.append(f"Session status {session.status.value!r} does not allow a handoff.")

        analysis = session.product.analysis
        if analysis is None:
            errors.append("Product analysis is missing.")
        else:
            if analysis.confidence < cfg.min_confidence:
                errors.append(
                    f"Analysis confidence {analysis.confidence:.2f} is below the "
                    f"minimum of {cfg.min_confidence:.2f}."
                )
            elif analysis.confidence < cfg.warn_confidence:
                warnings.append(
                    f"Analysis confidence {analysis.confidence:.2f} is low; "
                    "the receiving agent may need to re-confirm details."
                )
            for section in _REQUIRED_ANALYSIS_SECTIONS:
                if not analysis.sections.get(section):
                    warnings.append(f"Analysis has no {section!r} section.")

        completed = session.conversation.completed_topics()
        if not completed:
            errors.append("No conversation topic has been completed.")
        elif self.completed_ratio(session) < cfg.completion_ratio:
            warnings.append(
                f"Only {len(completed)} of {len(Topic)} topics are completed "
                f"(readiness needs {cfg.completion_ratio:.0%})."
            )

        if session.conversation.topics[Topic.VISUAL_PREFERENCES] is not TopicStatus.COMPLETED:
            warnings.append("Visual preferences have not been discussed yet.")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


__all__ = ["HandoffReadinessEvaluator"]

"""Coordinator configuration.

Named constants required by the coordinator live here as defaults of frozen
dataclasses.  ``load_config`` layers an optional YAML file and then
``HANDOFF_*`` environment variables on top of those defaults.

Classes
-------
- BudgetConfig       — ceiling and alert thresholds
- HandoffConfig      — readiness and validation thresholds
- RateLimitConfig    — fixed-window request allowance
- PricingConfig      — token pricing used to derive cost
- TimeoutConfig      — AI and store call timeouts
- CoordinatorConfig  — top-level aggregate
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

import yaml

from agent_handoff_coordinator.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_BUDGET: float = 300.0
DEFAULT_WARNING_THRESHOLD: float = 0.75
DEFAULT_CRITICAL_THRESHOLD: float = 0.90
DEFAULT_SESSION_TTL: timedelta = timedelta(hours=24)
DEFAULT_HANDOFF_COMPLETION_RATIO: float = 0.6

_RECOGNISED_BOOL_VALUES = frozenset(("1", "true", "yes", "0", "false", "no"))


@dataclass(frozen=True)
class BudgetConfig:
    total: float = DEFAULT_TOTAL_BUDGET
    warning_threshold: float = DEFAULT_WARNING_THRESHOLD
    critical_threshold: float = DEFAULT_CRITICAL_THRESHOLD

    def __post_init__(self) -> None:
        if self.total <= 0:
            raise ConfigError(f"budget.total must be positive, got {self.total!r}.")
        for name in ("warning_threshold", "critical_threshold"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ConfigError(f"budget.{name} must be in (0, 1], got {value!r}.")
        if self.warning_threshold >= self.critical_threshold:
            raise ConfigError("budget.warning_threshold must be below critical_threshold.")


@dataclass(frozen=True)
class HandoffConfig:
    """Readiness and validation thresholds.

    ``completion_ratio`` is the fraction of completed topics required for
    readiness.  ``min_confidence`` blocks a handoff; ``warn_confidence`` only
    produces a warning.  ``auto_handoff`` lets the coordinator transfer the
    conversation as soon as readiness flips to true.
    """

    completion_ratio: float = DEFAULT_HANDOFF_COMPLETION_RATIO
    min_confidence: float = 0.5
    warn_confidence: float = 0.7
    auto_handoff: bool = False

    def __post_init__(self) -> None:
        if not 0 < self.completion_ratio <= 1:
            raise ConfigError(
                f"handoff.completion_ratio must be in (0, 1], got {self.completion_ratio!r}."
            )
        if not 0 <= self.min_confidence <= self.warn_confidence <= 1:
            raise ConfigError(
                "handoff confidence thresholds must satisfy "
                "0 <= min_confidence <= warn_confidence <= 1."
            )


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_window: int = 60
    window_seconds: int = 3600

    def __post_init__(self) -> None:
        if self.requests_per_window <= 0 or self.window_seconds <= 0:
            raise ConfigError("rate_limit values must be positive.")


@dataclass(frozen=True)
class PricingConfig:
    """USD per 1000 tokens, plus a flat per-image analysis charge."""

    input_token_cost: float = 0.000125
    output_token_cost: float = 0.000375
    image_base_cost: float = 0.00125


@dataclass(frozen=True)
class TimeoutConfig:
    generation_seconds: float = 30.0
    store_seconds: float = 10.0


@dataclass(frozen=True)
class CoordinatorConfig:
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    handoff: HandoffConfig = field(default_factory=HandoffConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    session_ttl: timedelta = DEFAULT_SESSION_TTL
    analysis_ttl: timedelta = DEFAULT_SESSION_TTL

    def __post_init__(self) -> None:
        if self.session_ttl <= timedelta(0):
            raise ConfigError("session_ttl must be positive.")
        if not timedelta(0) < self.analysis_ttl <= self.session_ttl:
            raise ConfigError("analysis_ttl must be positive and not longer than session_ttl.")

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dict using the same keys ``load_config`` accepts."""
        return {
            "budget": _section_dict(self.budget),
            "handoff": _section_dict(self.handoff),
            "rate_limit": _section_dict(self.rate_limit),
            "pricing": _section_dict(self.pricing),
            "timeouts": _section_dict(self.timeouts),
            "session_ttl_seconds": self.session_ttl.total_seconds(),
            "analysis_ttl_seconds": self.analysis_ttl.total_seconds(),
        }


_SECTIONS: dict[str, type] = {
    "budget": BudgetConfig,
    "handoff": HandoffConfig,
    "rate_limit": RateLimitConfig,
    "pricing": PricingConfig,
    "timeouts": TimeoutConfig,
}


def _section_dict(section: object) -> dict[str, Any]:
    return {f.name: getattr(section, f.name) for f in fields(section)}  # type: ignore[arg-type]


def _parse_bool(value: str, default: bool) -> bool:
    """Parse a boolean environment variable with explicit default.

    Unrecognised values log a warning and return *default*.
    """
    if not value:
        return default
    normalised = value.strip().lower()
    if normalised not in _RECOGNISED_BOOL_VALUES:
        logger.warning(
            "Unrecognised boolean value %r, using default %s. "
            "Expected one of: true/1/yes or false/0/no.",
            value,
            default,
        )
        return default
    return normalised in ("1", "true", "yes")


def _coerce(section: str, name: str, raw: Any, current: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(raw, bool):
            return raw
        return _parse_bool(str(raw), current)
    try:
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{section}.{name}: invalid value {raw!r}.") from exc
    return raw


def _apply_mapping(config: CoordinatorConfig, data: Mapping[str, Any]) -> CoordinatorConfig:
    updates: dict[str, Any] = {}
    for key, value in data.items():
        if key in _SECTIONS:
            if not isinstance(value, Mapping):
                raise ConfigError(f"Section {key!r} must be a mapping.")
            section = getattr(config, key)
            known = {f.name for f in fields(section)}
            changes: dict[str, Any] = {}
            for name, raw in value.items():
                if name not in known:
                    raise ConfigError(f"Unknown setting {key}.{name}.")
                changes[name] = _coerce(key, name, raw, getattr(section, name))
            updates[key] = replace(section, **changes)
        elif key in ("session_ttl_seconds", "analysis_ttl_seconds"):
            try:
                seconds = float(value)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{key}: invalid value {value!r}.") from exc
            updates[key.removesuffix("_seconds")] = timedelta(seconds=seconds)
        else:
            raise ConfigError(f"Unknown configuration key {key!r}.")
    return replace(config, **updates)


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``HANDOFF_<SECTION>__<NAME>`` and ``HANDOFF_*_TTL_SECONDS`` overrides."""
    overrides: dict[str, Any] = {}
    for key, value in env.items():
        if not key.startswith("HANDOFF_"):
            continue
        name = key[len("HANDOFF_"):].lower()
        if name in ("session_ttl_seconds", "analysis_ttl_seconds"):
            overrides[name] = value
        elif "__" in name:
            section, setting = name.split("__", 1)
            overrides.setdefault(section, {})[setting] = value
    return overrides


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CoordinatorConfig:
    """Build a ``CoordinatorConfig`` from defaults, a YAML file and the environment.

    Parameters
    ----------
    path:
        Optional YAML file whose top-level keys mirror ``CoordinatorConfig``
        (``budget``, ``handoff``, ``rate_limit``, ``pricing``, ``timeouts``,
        ``session_ttl_seconds``, ``analysis_ttl_seconds``).
    env:
        Environment mapping.  Defaults to ``os.environ``.  Example:
        ``HANDOFF_BUDGET__TOTAL=150``.

    Raises
    ------
    ConfigError
        On unreadable files, unknown keys or invalid values.
    """
    config = CoordinatorConfig()
    if path is not None:
        try:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Could not read configuration file {str(path)!r}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigError("Configuration file must contain a mapping.")
        config = _apply_mapping(config, data)
        logger.debug("Loaded configuration from %s", path)

    overrides = _env_overrides(os.environ if env is None else env)
    if overrides:
        config = _apply_mapping(config, overrides)
    return config

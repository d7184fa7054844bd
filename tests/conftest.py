"""Shared fixtures for the agent-handoff-coordinator test suite."""
from __future__ import annotations

import pytest

from agent_handoff_coordinator.config import CoordinatorConfig
from agent_handoff_coordinator.coordinator import SessionCoordinator
from agent_handoff_coordinator.generation.simulated import SimulatedGenerationBackend
from agent_handoff_coordinator.session.store import SessionStore
from agent_handoff_coordinator.storage.memory import AsyncInMemoryBackend

from tests.support import FakeClock, make_analysis, make_session


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backend() -> AsyncInMemoryBackend:
    return AsyncInMemoryBackend()


@pytest.fixture()
def config() -> CoordinatorConfig:
    return CoordinatorConfig()


@pytest.fixture()
def store(
    backend: AsyncInMemoryBackend,
    config: CoordinatorConfig,
    clock: FakeClock,
) -> SessionStore:
    return SessionStore(backend, config, clock=clock)


@pytest.fixture()
def generator() -> SimulatedGenerationBackend:
    return SimulatedGenerationBackend()


@pytest.fixture()
def coordinator(
    store: SessionStore,
    generator: SimulatedGenerationBackend,
    config: CoordinatorConfig,
) -> SessionCoordinator:
    return SessionCoordinator(store, generator, config)


@pytest.fixture()
def session_factory():
    return make_session


@pytest.fixture()
def analysis_factory():
    return make_analysis

"""Fixtures shared by the simulator tests: fake clients and ready-made contexts."""

from typing import Callable, Iterator, List

import pytest

from config import SimulatorConfig
from engine_test_forks import ForkSchedule
from engine_test_types.tests.conftest import deterministic_kzg  # noqa: F401

from ..context import ScenarioContext
from ..scenario import Scenario
from ..sequencer import create_context, run_scenario
from .fake_client import FakeClientStarter


@pytest.fixture
def config() -> SimulatorConfig:
    """Simulator configuration with short readiness delays."""
    return SimulatorConfig(readiness_retries=2, readiness_backoff=0.01)


@pytest.fixture
def starter() -> FakeClientStarter:
    """Starter of in-process fake clients."""
    return FakeClientStarter()


@pytest.fixture
def make_context(
    starter: FakeClientStarter, config: SimulatorConfig
) -> Iterator[Callable[..., ScenarioContext]]:
    """Return a factory of contexts on fake clients; every context is closed afterwards."""
    contexts: List[ScenarioContext] = []

    def factory(schedule: ForkSchedule | None = None, **kwargs) -> ScenarioContext:
        context = ScenarioContext(
            "test",
            schedule=schedule if schedule is not None else ForkSchedule(),
            starter=starter,
            config=config,
            **kwargs,
        )
        context.clmock.sleep = lambda _: None
        contexts.append(context)
        return context

    yield factory
    for context in contexts:
        context.close()


@pytest.fixture
def context(make_context: Callable[..., ScenarioContext]) -> ScenarioContext:
    """A Cancun-from-genesis context with its primary client launched."""
    context = make_context()
    context.launch_client()
    return context


@pytest.fixture
def run(
    starter: FakeClientStarter, config: SimulatorConfig
) -> Callable[[Scenario], ScenarioContext]:
    """Return a function that runs a scenario on fake clients and returns its context."""

    def runner(scenario: Scenario) -> ScenarioContext:
        context = create_context(scenario, starter, config)
        context.clmock.sleep = lambda _: None
        run_scenario(scenario, context)
        return context

    return runner

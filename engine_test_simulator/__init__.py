"""Engine API conformance scenarios driven by a mocked consensus layer."""

from .client import (
    ClientReadiness,
    ClientRole,
    ClientStarter,
    EngineClient,
    HiveClientStarter,
)
from .clmock import CLMock, CLMockState, ProducedPayload
from .context import ScenarioContext
from .exceptions import (
    ClientNotReadyError,
    ProtocolViolationError,
    ScenarioFailure,
    SequencingError,
    SimulatorError,
)
from .scenario import Scenario
from .scenarios import all_scenarios
from .sequencer import StepSequencer, create_context, run_scenario

__all__ = [
    "CLMock",
    "CLMockState",
    "ClientNotReadyError",
    "ClientReadiness",
    "ClientRole",
    "ClientStarter",
    "EngineClient",
    "HiveClientStarter",
    "ProducedPayload",
    "ProtocolViolationError",
    "Scenario",
    "ScenarioContext",
    "ScenarioFailure",
    "SequencingError",
    "SimulatorError",
    "StepSequencer",
    "all_scenarios",
    "create_context",
    "run_scenario",
]

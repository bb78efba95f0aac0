"""Run one Engine API scenario against hive clients of one type."""

import pytest

from config import SimulatorConfig
from engine_test_simulator import (
    ClientNotReadyError,
    HiveClientStarter,
    Scenario,
    ScenarioFailure,
    create_context,
    run_scenario,
)


def test_scenario(
    scenario: Scenario,
    client_starter: HiveClientStarter,
    simulator_config: SimulatorConfig,
):
    """Run every step of the scenario; clients are stopped whatever the outcome."""
    context = create_context(scenario, client_starter, simulator_config)
    try:
        run_scenario(scenario, context)
    except ScenarioFailure as e:
        pytest.fail(str(e), pytrace=False)
    except ClientNotReadyError as e:
        pytest.exit(
            f"Aborting the run, a client could not be started: {e}",
            returncode=pytest.ExitCode.INTERNAL_ERROR,
        )

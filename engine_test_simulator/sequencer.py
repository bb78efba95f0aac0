"""Runs the steps of a scenario in order against a fresh context."""

from typing import Sequence

from config import SimulatorConfig
from pytest_plugins.logging import get_logger

from .client import ClientRole, ClientStarter
from .context import ScenarioContext
from .exceptions import ClientNotReadyError, ScenarioFailure, SimulatorError, StepFailure
from .scenario import Scenario
from .steps import Step

logger = get_logger(__name__)


class StepSequencer:
    """Executes steps one after the other, stopping at the first failure."""

    def __init__(self, context: ScenarioContext):
        """Initialize the sequencer for a scenario context."""
        self.context = context

    def run(self, steps: Sequence[Step]):
        """Run every step; a failure is attributed to the step that raised it."""
        for index, step in enumerate(steps, start=1):
            head = self.context.snapshot().head
            logger.info(
                f"Step {index}/{len(steps)}: {step.description()} "
                f"(head {head.number if head is not None else 'none'})"
            )
            try:
                step.execute(self.context)
            except SimulatorError as e:
                logger.fail(f"Step {index} failed: {e}")
                raise StepFailure(f"step {index} {step.description()}", e) from e


def create_context(
    scenario: Scenario, starter: ClientStarter, config: SimulatorConfig
) -> ScenarioContext:
    """Return a fresh context configured for the scenario."""
    return ScenarioContext(
        scenario.name,
        schedule=scenario.schedule(config.block_timestamp_increment),
        starter=starter,
        config=config,
        blob_params=scenario.blob_params,
        account_count=scenario.account_count,
    )


def run_scenario(scenario: Scenario, context: ScenarioContext):
    """
    Launch the primary client and run the scenario, stopping every client at the end.

    Failures are raised as `ScenarioFailure`, except a client that never becomes ready,
    which is a setup failure of the whole run.
    """
    logger.info(f"Running scenario '{scenario.name}'")
    try:
        context.launch_client(ClientRole.MIRRORED)
        StepSequencer(context).run(scenario.steps)
    except ClientNotReadyError:
        raise
    except SimulatorError as e:
        raise ScenarioFailure(scenario.name, e) from e
    finally:
        context.close()
    logger.info(f"Scenario '{scenario.name}' passed")

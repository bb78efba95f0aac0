"""
A pytest plugin that turns every scenario into a test run against each hive client type.

The simulator configuration is read once per session from `env.yaml`, and command line
options override it. The KZG trusted setup and the blob cache are configured before any
scenario computes a blob.
"""

import html
from pathlib import Path
from typing import Generator, List

import pytest
from hive.client import ClientType
from hive.testing import HiveTest

from config import SimulatorConfig
from config.env import ENV_PATH, EnvConfig
from engine_test_simulator import HiveClientStarter, Scenario, all_scenarios
from engine_test_types import KZG, configure_blob_cache

from ..concurrency import ClientSlots
from ..logging import get_logger

logger = get_logger(__name__)

TEST_SUITE_NAME = "engine-cancun"
TEST_SUITE_DESCRIPTION = (
    "Engine API scenarios of the Cancun upgrade: blob transactions, payload versions and "
    "devp2p behavior, driven by a mocked consensus layer."
)


def pytest_addoption(parser: pytest.Parser):  # noqa: D103
    engine_group = parser.getgroup(
        "engine_simulator", "Arguments related to the Engine API simulator"
    )
    engine_group.addoption(
        "--env-config",
        action="store",
        dest="env_config",
        type=Path,
        default=ENV_PATH,
        help=f"Path of the simulator configuration file, default - {ENV_PATH}.",
    )
    engine_group.addoption(
        "--get-payload-delay",
        action="store",
        dest="get_payload_delay",
        type=float,
        default=None,
        help="Seconds between forkchoiceUpdated and getPayload, overriding the config file.",
    )
    engine_group.addoption(
        "--client-slots",
        action="store",
        dest="client_slots",
        type=int,
        default=None,
        help=(
            "Scenarios whose clients may run at the same time across all xdist workers, "
            "overriding the config file."
        ),
    )


def load_simulator_config(config: pytest.Config) -> SimulatorConfig:
    """Return the file configuration with the command line and environment overrides."""
    simulator_config = EnvConfig(config.getoption("env_config")).simulator.with_environment()
    overrides = {
        name: value
        for name in ("get_payload_delay", "client_slots")
        if (value := config.getoption(name)) is not None
    }
    if not overrides:
        return simulator_config
    return SimulatorConfig.model_validate(simulator_config.model_dump() | overrides)


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config: pytest.Config):
    """Load the configuration and set up blob computation for the session."""
    try:
        simulator_config = load_simulator_config(config)
    except ValueError as e:
        pytest.exit(str(e), returncode=pytest.ExitCode.USAGE_ERROR)
    config.simulator_config = simulator_config  # type: ignore[attr-defined]
    KZG.configure(simulator_config.kzg_trusted_setup)
    configure_blob_cache(simulator_config.blob_cache_dir)


def pytest_report_header(config: pytest.Config) -> List[str]:
    """Show the effective configuration in the session header."""
    simulator_config: SimulatorConfig = config.simulator_config  # type: ignore[attr-defined]
    return [f"engine simulator: {simulator_config.model_dump_json(exclude_none=True)}"]


def pytest_generate_tests(metafunc: pytest.Metafunc):
    """Parametrize with every scenario and every execution client known to hive."""
    if "scenario" in metafunc.fixturenames:
        scenarios = all_scenarios()
        metafunc.parametrize("scenario", scenarios, ids=[s.name for s in scenarios])
    if "client_type" in metafunc.fixturenames:
        client_types = metafunc.config.hive_execution_clients  # type: ignore[attr-defined]
        metafunc.parametrize("client_type", client_types, ids=[c.name for c in client_types])


def describe_scenario(scenario: Scenario) -> str:
    """Return the HTML description of a scenario shown by hive."""
    lines = [f"<b>{html.escape(scenario.name)}</b>"]
    if scenario.description:
        lines.append(html.escape(scenario.description))
    lines.append("")
    lines.append("<b>Steps</b>")
    lines += [
        f"{index}. <code>{html.escape(step.description())}</code>"
        for index, step in enumerate(scenario.steps, start=1)
    ]
    return "<br/>".join(lines)


@pytest.fixture(scope="session")
def simulator_config(request: pytest.FixtureRequest) -> SimulatorConfig:
    """Return the configuration of the session."""
    return request.config.simulator_config  # type: ignore[attr-defined]


@pytest.fixture(scope="session")
def test_suite_name() -> str:
    """Name of the hive test suite."""
    return TEST_SUITE_NAME


@pytest.fixture(scope="session")
def test_suite_description() -> str:
    """Description of the hive test suite."""
    return TEST_SUITE_DESCRIPTION


@pytest.fixture(scope="function")
def test_case_description(scenario: Scenario) -> str:
    """Description of the running scenario."""
    return describe_scenario(scenario)


@pytest.fixture(scope="session")
def client_slots(session_temp_folder: Path, simulator_config: SimulatorConfig) -> ClientSlots:
    """Slots shared by every worker of the session."""
    return ClientSlots(session_temp_folder, simulator_config.client_slots)


@pytest.fixture(scope="function")
def client_slot(client_slots: ClientSlots) -> Generator[int, None, None]:
    """Hold a slot while the scenario's clients run."""
    with client_slots.acquire() as index:
        logger.verbose(f"Holding client slot {index}")
        yield index


@pytest.fixture(scope="function")
def client_starter(
    hive_test: HiveTest,
    client_type: ClientType,
    simulator_config: SimulatorConfig,
    client_slot: int,
) -> HiveClientStarter:
    """Start the clients of the running scenario as hive containers."""
    return HiveClientStarter(hive_test, client_type, simulator_config)

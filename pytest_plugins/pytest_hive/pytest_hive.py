"""
A pytest plugin that reports scenarios to a hive simulator.

Simulators using this plugin must define the `test_suite_name`, `test_suite_description`
and `test_case_description` fixtures.

Every scenario becomes a hive test. Its result is sent in the teardown of the `hive_test`
fixture, after the fixtures it depends on (client slots, started clients) have been torn
down, so that their log output is part of the details shown by hive. Since `hive_test`
depends on `test_suite`, pytest tears it down before the suite is ended.
"""

import json
import os
import warnings
from dataclasses import asdict
from pathlib import Path
from typing import Generator, List

import pytest
from filelock import FileLock
from hive.client import ClientRole
from hive.simulation import Simulation
from hive.testing import HiveTest, HiveTestResult, HiveTestSuite

from ..logging import get_logger
from .hive_info import ClientFile, HiveInfo

logger = get_logger(__name__)


def pytest_addoption(parser: pytest.Parser):  # noqa: D103
    pytest_hive_group = parser.getgroup("pytest_hive", "Arguments related to pytest hive")
    pytest_hive_group.addoption(
        "--hive-simulator",
        action="store",
        dest="hive_simulator",
        default=os.environ.get("HIVE_SIMULATOR"),
        help=(
            "The hive simulator endpoint, e.g. http://127.0.0.1:3000. By default, the value is "
            "taken from the HIVE_SIMULATOR environment variable."
        ),
    )


def pytest_configure(config: pytest.Config):
    """Connect to the hive simulator and list the execution clients it can start."""
    hive_simulator_url = config.getoption("hive_simulator")
    if hive_simulator_url is None:
        pytest.exit(
            "The HIVE_SIMULATOR environment variable is not set.\n\n"
            "If running locally, start hive in --dev mode, for example:\n"
            "./hive --dev --client go-ethereum\n\n"
            "and set HIVE_SIMULATOR to the reported URL, for example:\n"
            "export HIVE_SIMULATOR=http://127.0.0.1:3000",
            returncode=pytest.ExitCode.USAGE_ERROR,
        )
    config.hive_simulator_url = hive_simulator_url  # type: ignore[attr-defined]
    config.hive_simulator = Simulation(url=hive_simulator_url)  # type: ignore[attr-defined]
    try:
        config.hive_execution_clients = config.hive_simulator.client_types(  # type: ignore
            role=ClientRole.ExecutionClient
        )
    except Exception as e:
        message = (
            f"Error connecting to hive simulator at {hive_simulator_url}.\n\n"
            "Did you forget to start hive in --dev mode?\n"
            "./hive --dev --client go-ethereum\n\n"
        )
        if config.option.verbose > 0:
            message += f"Error details:\n{str(e)}"
        else:
            message += "Re-run with -v for more details."
        pytest.exit(message, returncode=pytest.ExitCode.USAGE_ERROR)


def get_hive_info(simulator: Simulation) -> HiveInfo | None:
    """Fetch the hive instance information; older hive versions do not provide it."""
    try:
        return HiveInfo(**simulator.hive_instance())
    except Exception as e:
        warnings.warn(
            f"Error fetching hive information: {str(e)}\n\n"
            "Hive might need to be updated to a newer version.",
            stacklevel=2,
        )
    return None


@pytest.hookimpl(trylast=True)
def pytest_report_header(config: pytest.Config) -> List[str] | None:
    """Show the hive instance in the session header."""
    if config.option.collectonly:
        return None
    header_lines = [f"hive simulator: {config.hive_simulator_url}"]  # type: ignore
    if hive_info := get_hive_info(config.hive_simulator):  # type: ignore[attr-defined]
        header_lines += [
            f"hive command: {' '.join(hive_info.command)}",
            f"hive commit: {hive_info.commit}",
            f"hive date: {hive_info.date}",
        ]
        for client in hive_info.client_file.root:
            header_lines.append(
                f"hive client ({client.client}): {client.model_dump_json(exclude_none=True)}"
            )
    return header_lines


@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Keep the setup, call and teardown reports on the item as `result_<phase>`."""
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"result_{report.when}", report)


@pytest.fixture(scope="session")
def simulator(request: pytest.FixtureRequest) -> Simulation:
    """Return the hive simulator instance."""
    return request.config.hive_simulator  # type: ignore[attr-defined]


@pytest.fixture(scope="session")
def hive_info(simulator: Simulation) -> HiveInfo | None:
    """Return the hive instance information."""
    return get_hive_info(simulator)


@pytest.fixture(scope="session")
def client_file(hive_info: HiveInfo | None) -> ClientFile:
    """Return the client file hive was started with."""
    if hive_info is None:
        return ClientFile(root=[])
    return hive_info.client_file


def _update_users(users_file: Path, delta: int) -> int:
    users = json.loads(users_file.read_text()) if users_file.exists() else 0
    users += delta
    users_file.write_text(json.dumps(users))
    return users


@pytest.fixture(scope="session")
def test_suite(
    simulator: Simulation,
    session_temp_folder: Path,
    test_suite_name: str,
    test_suite_description: str,
) -> Generator[HiveTestSuite, None, None]:
    """
    Start the hive test suite shared by every xdist worker, and end it when the last
    worker is done.
    """
    suite_file = session_temp_folder / f"test_suite_{test_suite_name.replace('/', '_')}"
    users_file = suite_file.with_name(f"{suite_file.name}_users")
    with FileLock(suite_file.with_suffix(".lock")):
        if suite_file.exists():
            suite = HiveTestSuite(**json.loads(suite_file.read_text()))
        else:
            suite = simulator.start_suite(
                name=test_suite_name, description=test_suite_description
            )
            suite_file.write_text(json.dumps(asdict(suite)))
        _update_users(users_file, 1)

    yield suite

    with FileLock(suite_file.with_suffix(".lock")):
        if _update_users(users_file, -1) == 0:
            suite.end()
            suite_file.unlink()
            users_file.unlink()


def _test_result(node: pytest.Item) -> HiveTestResult:
    captured = []
    for phase in ("setup", "call", "teardown"):
        report = getattr(node, f"result_{phase}", None)
        if report is not None:
            captured.append(
                f"# Captured output from scenario {phase}\n\n"
                f"## stdout:\n{report.capstdout or 'None'}\n"
                f"## stderr:\n{report.capstderr or 'None'}\n"
            )
    captured_output = "\n".join(captured)

    for phase, label in (("setup", "setup"), ("call", "run"), ("teardown", "teardown")):
        report = getattr(node, f"result_{phase}", None)
        if report is not None and report.failed:
            return HiveTestResult(
                test_pass=False,
                details=f"Scenario {label} failed.\n\n{report.longreprtext}\n{captured_output}",
            )
    call_report = getattr(node, "result_call", None)
    if call_report is None or not call_report.passed:
        return HiveTestResult(
            test_pass=False, details="Scenario did not run.\n\n" + captured_output
        )
    return HiveTestResult(test_pass=True, details="Scenario passed.\n\n" + captured_output)


@pytest.fixture(scope="function")
def hive_test(
    request: pytest.FixtureRequest, test_suite: HiveTestSuite
) -> Generator[HiveTest, None, None]:
    """Start a hive test for the running scenario and end it with the scenario's result."""
    try:
        test_case_description = request.getfixturevalue("test_case_description")
    except pytest.FixtureLookupError:
        pytest.exit(
            "Error: The 'test_case_description' fixture has not been defined by the simulator "
            "or pytest plugin using this plugin!"
        )
    test: HiveTest = test_suite.start_test(
        name=request.node.name,
        description=test_case_description,
    )
    yield test

    try:
        result = _test_result(request.node)
    except Exception as e:
        logger.warning(f"Error processing the result of {request.node.nodeid}: {e}")
        result = HiveTestResult(
            test_pass=False, details=f"Exception whilst processing scenario result: {e}"
        )
    test.end(result=result)
    logger.verbose(f"Reported {request.node.nodeid} to hive")

"""Tests for the simulator logging plugin."""

import io
import logging
import re
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ..logging import (
    FAIL_LEVEL,
    VERBOSE_LEVEL,
    SimulatorFormatter,
    SimulatorLogger,
    configure_logging,
    get_logger,
    parse_log_level,
    pytest_configure,
    pytest_runtest_logreport,
    scenario_outcome,
    session_logger,
)


@pytest.fixture
def clean_root_logger():
    """Restore the root logger handlers and level after the test."""
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers.copy()
    original_level = root_logger.level
    yield root_logger
    for handler in root_logger.handlers[:] + session_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
        session_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


def test_custom_levels_registered():
    """The custom levels are known to the logging module by name and number."""
    assert logging.getLevelName(VERBOSE_LEVEL) == "VERBOSE"
    assert logging.getLevelName(FAIL_LEVEL) == "FAIL"
    assert logging.getLevelName("VERBOSE") == VERBOSE_LEVEL


def test_get_logger_type():
    """Test that get_logger returns the simulator logger class."""
    assert isinstance(get_logger("engine_sim.test_logger"), SimulatorLogger)


class TestSimulatorLogger:
    """Test the custom logger methods."""

    def setup_method(self):
        """Attach a stream handler to a fresh logger."""
        self.log_output = io.StringIO()
        self.logger = get_logger("engine_sim.test_simulator_logger")
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)
        handler = logging.StreamHandler(self.log_output)
        handler.setFormatter(logging.Formatter("%(levelname)s %(funcName)s: %(message)s"))
        self.logger.addHandler(handler)

    def test_verbose_and_fail(self):
        """Both custom levels are logged, with the caller as origin."""
        self.logger.setLevel(logging.DEBUG)
        self.logger.verbose("fcU sent to %s", "client-0")
        self.logger.fail("unexpected payload status")
        output = self.log_output.getvalue()
        assert "VERBOSE test_verbose_and_fail: fcU sent to client-0" in output
        assert "FAIL test_verbose_and_fail: unexpected payload status" in output

    def test_verbose_filtered_at_info(self):
        """Verbose messages are hidden at the default INFO level."""
        self.logger.setLevel(logging.INFO)
        self.logger.verbose("hidden")
        self.logger.info("shown")
        output = self.log_output.getvalue()
        assert "hidden" not in output
        assert "INFO test_verbose_filtered_at_info: shown" in output


@pytest.mark.parametrize(
    "value,level",
    [
        ("INFO", logging.INFO),
        ("verbose", VERBOSE_LEVEL),
        ("fail", FAIL_LEVEL),
        ("25", 25),
    ],
)
def test_parse_log_level(value: str, level: int):
    """Test parsing of level names and numbers."""
    assert parse_log_level(value) == level


def test_parse_log_level_invalid():
    """Unknown level names are rejected with the list of valid names."""
    with pytest.raises(ValueError, match="VERBOSE"):
        parse_log_level("chatty")


def test_formatter_timestamps():
    """Timestamps are in UTC with milliseconds."""
    formatter = SimulatorFormatter(fmt="%(asctime)s: %(message)s")
    record = logging.makeLogRecord({"msg": "payload produced", "created": 1609459200.0})
    pattern = r"2021-01-01 00:00:00\.\d{3}\+00:00: payload produced"
    assert re.match(pattern, formatter.format(record))


def test_formatter_colors(monkeypatch: pytest.MonkeyPatch):
    """Colors are applied outside of Docker only, and never change the record."""
    record = logging.makeLogRecord({"levelno": FAIL_LEVEL, "levelname": "FAIL", "msg": "x"})

    monkeypatch.setattr(SimulatorFormatter, "running_in_docker", False)
    formatter = SimulatorFormatter(fmt="[%(levelname)s] %(message)s", color=True)
    assert "\033[35mFAIL\033[0m" in formatter.format(record)
    assert record.levelname == "FAIL"

    monkeypatch.setattr(SimulatorFormatter, "running_in_docker", True)
    formatter = SimulatorFormatter(fmt="[%(levelname)s] %(message)s", color=True)
    assert formatter.format(record) == "[FAIL] x"


def test_configure_logging_with_file(clean_root_logger: logging.Logger, tmp_path: Path):
    """Messages are written to the log file, which is created with its directory."""
    log_file = tmp_path / "nested" / "sim.log"
    handler = configure_logging(log_level="VERBOSE", log_file=log_file, log_to_stdout=False)
    assert isinstance(handler, logging.FileHandler)
    assert clean_root_logger.level == VERBOSE_LEVEL

    get_logger("engine_sim.test_config").verbose("newPayload sent")
    handler.flush()
    assert "newPayload sent" in log_file.read_text()


def test_configure_logging_without_file(clean_root_logger: logging.Logger):
    """Without a log file, only the stdout handler is installed."""
    assert configure_logging(log_level=logging.WARNING) is None
    assert clean_root_logger.level == logging.WARNING
    assert [type(h) for h in clean_root_logger.handlers] == [logging.StreamHandler]


def test_pytest_configure(
    clean_root_logger: logging.Logger, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
):
    """Each xdist worker writes its own file in the configured directory."""
    options = {"sim_log_level": logging.INFO, "sim_log_dir": tmp_path}
    config = MagicMock()
    config.workerinput = {"log_stem": "engine-sim-20240101-000000"}
    config.getoption.side_effect = options.__getitem__
    monkeypatch.setenv("PYTEST_XDIST_WORKER", "gw1")

    pytest_configure(config)

    assert config.option.sim_log_file_path == tmp_path / "engine-sim-20240101-000000-gw1.log"
    file_handlers = [h for h in clean_root_logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1
    assert Path(file_handlers[0].baseFilename).parent == tmp_path


def report(outcome: str, **attributes) -> MagicMock:
    """A call phase report with the given outcome."""
    result = MagicMock(spec=["when", "passed", "failed", "skipped", "duration", "nodeid"])
    result.when = "call"
    result.passed, result.failed, result.skipped = (
        outcome == "passed",
        outcome == "failed",
        outcome == "skipped",
    )
    result.duration = 1.5
    result.nodeid = "test_via_hive.py::test_scenario[blob-transactions]"
    for name, value in attributes.items():
        setattr(result, name, value)
    return result


@pytest.mark.parametrize(
    "outcome,attributes,expected",
    [
        ("passed", {}, (logging.INFO, "PASSED")),
        ("failed", {}, (FAIL_LEVEL, "FAILED")),
        ("skipped", {}, (logging.INFO, "SKIPPED")),
        ("skipped", {"wasxfail": ""}, (logging.INFO, "XFAIL")),
        ("passed", {"wasxfail": ""}, (logging.INFO, "XPASS")),
        ("failed", {"wasxfail": ""}, (logging.ERROR, "XFAIL ERROR")),
    ],
)
def test_scenario_outcome(outcome: str, attributes: dict, expected: tuple):
    """Each report outcome maps to a status word and a level."""
    assert scenario_outcome(report(outcome, **attributes)) == expected


def test_scenario_results_only_in_file(
    clean_root_logger: logging.Logger, tmp_path: Path, capsys: pytest.CaptureFixture
):
    """Scenario results are written to the log file but not to stdout."""
    log_file = tmp_path / "sim.log"
    handler = configure_logging(log_file=log_file)
    assert handler is not None

    pytest_runtest_logreport(report("failed"))
    handler.flush()

    assert "FAILED in 1.50s: test_via_hive.py::test_scenario[blob-transactions]" in (
        log_file.read_text()
    )
    assert "FAILED" not in capsys.readouterr().out

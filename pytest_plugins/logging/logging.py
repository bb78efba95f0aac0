"""
A Pytest plugin to configure logging for Engine API simulator sessions.

Log output captured by pytest has no timestamps, but the simulator log shown by hive for a
failed scenario is mostly useful to line up Engine API calls with the client's own log.
This plugin therefore writes its own timestamped log file, one per xdist worker, and
records the start, result and end of each scenario only in that file.

The module also offers `configure_logging` for use outside of pytest.
"""

import functools
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional, Tuple, Union, cast

import pytest
from _pytest.terminal import TerminalReporter

VERBOSE_LEVEL = 15  # every Engine API call
FAIL_LEVEL = 35  # protocol violations of the client under test

logging.addLevelName(VERBOSE_LEVEL, "VERBOSE")
logging.addLevelName(FAIL_LEVEL, "FAIL")

LEVELS = (
    logging.DEBUG,
    VERBOSE_LEVEL,
    logging.INFO,
    logging.WARNING,
    FAIL_LEVEL,
    logging.ERROR,
    logging.CRITICAL,
)

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class SimulatorLogger(logging.Logger):
    """Logger with the `verbose` and `fail` levels used by the simulator."""

    def verbose(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log an Engine API request or response."""
        self._log_at(VERBOSE_LEVEL, msg, args, kwargs)

    def fail(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log a protocol violation, right before the matching exception is raised."""
        self._log_at(FAIL_LEVEL, msg, args, kwargs)

    def _log_at(self, level: int, msg: object, args: Tuple, kwargs: Dict[str, Any]) -> None:
        if self.isEnabledFor(level):
            # point the record at the caller of verbose() or fail()
            kwargs["stacklevel"] = kwargs.get("stacklevel", 1) + 2
            self._log(level, msg, args, **kwargs)


logging.setLoggerClass(SimulatorLogger)


def get_logger(name: str) -> SimulatorLogger:
    """Get a logger typed with the simulator's custom levels."""
    return cast(SimulatorLogger, logging.getLogger(name))


logger = get_logger(__name__)

# Scenario boundaries and results go to the worker's log file only.
session_logger = get_logger("engine_sim.session")
session_logger.propagate = False


class SimulatorFormatter(logging.Formatter):
    """UTC timestamps with milliseconds; level names colored on a terminal."""

    running_in_docker: ClassVar[bool] = Path("/.dockerenv").exists()

    COLORS: ClassVar[Dict[int, str]] = {
        logging.DEBUG: "\033[37m",
        VERBOSE_LEVEL: "\033[36m",
        logging.INFO: "\033[36m",
        logging.WARNING: "\033[33m",
        FAIL_LEVEL: "\033[35m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = DEFAULT_FORMAT, color: bool = False):
        """Color is never used inside a hive container."""
        super().__init__(fmt=fmt)
        self.color = color and not self.running_in_docker

    def formatTime(self, record, datefmt=None):  # noqa: D102,N802
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return created.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3] + "+00:00"

    def format(self, record: logging.LogRecord) -> str:
        """Format a copy of the record, so other handlers see the plain level name."""
        if not self.color:
            return super().format(record)
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(colored.levelno, self.RESET)
        colored.levelname = f"{color}{colored.levelname}{self.RESET}"
        return super().format(colored)


def parse_log_level(value: str) -> int:
    """Accept level names in any case (e.g. 'INFO', 'verbose') or numeric values."""
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    if isinstance(level, int):
        return level
    names = ", ".join(logging.getLevelName(known) for known in LEVELS)
    raise ValueError(f"Invalid log level '{value}'. Expected one of: {names} or a number.")


def configure_logging(
    log_level: Union[int, str] = "INFO",
    log_file: Optional[Path] = None,
    log_to_stdout: bool = True,
) -> Optional[logging.FileHandler]:
    """
    Replace the root logger handlers with the simulator's.

    The session logger writes to the same file but never to stdout. Returns the file
    handler, if a log file was given.
    """
    root_logger = logging.getLogger()
    if isinstance(log_level, str):
        log_level = parse_log_level(log_level)
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:] + session_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
        session_logger.removeHandler(handler)

    file_handler = None
    if log_file is not None:
        log_file.parent.mkdir(exist_ok=True, parents=True)
        file_handler = logging.FileHandler(log_file, mode="w")
        file_handler.setFormatter(SimulatorFormatter())
        root_logger.addHandler(file_handler)
        session_logger.addHandler(file_handler)

    if log_to_stdout:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(SimulatorFormatter(color=sys.stdout.isatty()))
        root_logger.addHandler(stream_handler)

    logger.verbose("Logging configured at level %s", logging.getLevelName(log_level))
    return file_handler


def pytest_addoption(parser):  # noqa: D103
    logging_group = parser.getgroup(
        "logging", "Arguments related to logging from the Engine API simulator."
    )
    logging_group.addoption(
        "--sim-log-level",  # --log-level belongs to pytest's own logging plugin
        action="store",
        default="INFO",
        type=parse_log_level,
        dest="sim_log_level",
        help=(
            "The logging level of the simulator: DEBUG, VERBOSE, INFO, WARNING, FAIL, ERROR "
            "or CRITICAL, default - INFO. VERBOSE logs every Engine API call."
        ),
    )
    logging_group.addoption(
        "--sim-log-dir",
        action="store",
        default="logs",
        type=Path,
        dest="sim_log_dir",
        help="Directory where the per-worker log files are written, default - logs.",
    )


@functools.cache
def get_log_stem() -> str:
    """Return the file name stem shared by the log files of all workers of a session."""
    return datetime.now(timezone.utc).strftime("engine-sim-%Y%m%d-%H%M%S")


def pytest_configure_node(node):
    """Share the log stem with the xdist workers."""
    node.workerinput["log_stem"] = get_log_stem()


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config: pytest.Config) -> None:
    """Create one log file per xdist worker, all with the same session timestamp."""
    log_stem = getattr(config, "workerinput", {}).get("log_stem") or get_log_stem()
    worker_id = os.getenv("PYTEST_XDIST_WORKER", "main")
    log_file = Path(config.getoption("sim_log_dir")) / f"{log_stem}-{worker_id}.log"
    config.option.sim_log_file_path = log_file
    configure_logging(config.getoption("sim_log_level"), log_file)


def pytest_report_header(config: pytest.Config) -> list[str]:
    """Show the log file path in the test session header."""
    return [f"Log file: {config.option.sim_log_file_path}"]


def pytest_terminal_summary(terminalreporter: TerminalReporter, exitstatus: int) -> None:
    """Display the log file path in the terminal summary."""
    if terminalreporter.config.option.collectonly:
        return
    log_file = terminalreporter.config.option.sim_log_file_path
    terminalreporter.write_sep("-", f"Log file: {log_file.resolve()}", yellow=True)


def scenario_outcome(report: pytest.TestReport) -> Tuple[int, str]:
    """Return the log level and the status word of a scenario's call phase."""
    if hasattr(report, "wasxfail"):
        if report.skipped:
            return logging.INFO, "XFAIL"
        if report.passed:
            return logging.INFO, "XPASS"
        return logging.ERROR, "XFAIL ERROR"
    if report.skipped:
        return logging.INFO, "SKIPPED"
    if report.failed:
        return FAIL_LEVEL, "FAILED"
    return logging.INFO, "PASSED"


def pytest_runtest_logstart(nodeid: str, location: tuple[str, int, str]) -> None:  # noqa: D103
    session_logger.info("START SCENARIO: %s", nodeid)


def pytest_runtest_logreport(report: pytest.TestReport) -> None:
    """Log the scenario status and duration after it runs."""
    if report.when != "call":
        return
    level, status = scenario_outcome(report)
    session_logger.log(level, "%s in %.2fs: %s", status, report.duration, report.nodeid)


def pytest_runtest_logfinish(nodeid: str, location: tuple[str, int, str]) -> None:  # noqa: D103
    session_logger.info("END SCENARIO: %s", nodeid)

"""Import the logging module content to make it available from pytest_plugins.logging."""

from .logging import (
    FAIL_LEVEL,
    VERBOSE_LEVEL,
    SimulatorFormatter,
    SimulatorLogger,
    configure_logging,
    get_logger,
    parse_log_level,
)

__all__ = [
    "VERBOSE_LEVEL",
    "FAIL_LEVEL",
    "SimulatorLogger",
    "SimulatorFormatter",
    "get_logger",
    "parse_log_level",
    "configure_logging",
]

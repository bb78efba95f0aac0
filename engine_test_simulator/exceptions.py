"""
Failures raised while running a scenario.

Client behavior failures (`ProtocolViolationError`, `TransportError`, `SubmissionError`) are
kept distinct from mistakes in a scenario definition (`SequencingError`) so that a report
never blames the client for a broken test table.
"""

from typing import TYPE_CHECKING, Any, List

from engine_test_exceptions import EngineAPIError

if TYPE_CHECKING:
    from engine_test_types import Transaction


class SimulatorError(Exception):
    """Base class of every failure raised by the simulator."""


class ProtocolViolationError(SimulatorError):
    """The client returned a wrong status, error code or payload shape."""

    def __init__(self, message: str, *, expected: Any = None, actual: Any = None):
        """Record the expected and actual values next to the message."""
        super().__init__(message)
        self.message = message
        self.expected = expected
        self.actual = actual

    def __str__(self) -> str:
        """Return the message followed by the expected and actual values."""
        if self.expected is None and self.actual is None:
            return self.message
        return f"{self.message}\n  expected: {self.expected}\n  actual:   {self.actual}"


class UnexpectedErrorCode(ProtocolViolationError):
    """The client answered with an error code other than the expected one."""

    def __init__(self, method: str, *, expected: int | None, actual: int | None, message: str):
        """Describe both error codes by name."""
        super().__init__(
            f"{method} returned an unexpected error: {message}",
            expected=EngineAPIError.describe(expected),
            actual=EngineAPIError.describe(actual),
        )
        self.expected_code = expected
        self.actual_code = actual


class TransportError(SimulatorError):
    """A request to a client could not be completed (connection refused, timeout)."""

    def __init__(self, client: str, method: str, cause: Exception):
        """Name the client and the method that failed."""
        super().__init__(f"{method} to client {client} failed: {cause}")
        self.client = client
        self.method = method
        self.cause = cause


class ClientNotReadyError(SimulatorError):
    """A client never became reachable while the scenario was being set up."""


class SubmissionError(SimulatorError):
    """The client rejected a transaction (pool full, underpriced, nonce gap)."""

    def __init__(self, tx: "Transaction", reason: str, code: int | None = None):
        """Record the rejected transaction and the client's reason."""
        super().__init__(f"transaction {tx.hash} (nonce {tx.nonce}) rejected: {reason}")
        self.tx = tx
        self.reason = reason
        self.code = code


class SequencingError(SimulatorError):
    """A step was used in a way its scenario does not support."""


class StepFailure(SimulatorError):
    """A failure attributed to the step that caused it."""

    def __init__(self, step: str, cause: Exception):
        """Wrap the cause with the step description."""
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause


class ParallelStepsError(SimulatorError):
    """One or more members of a parallel group failed."""

    def __init__(self, failures: List[StepFailure]):
        """Collect every failing member, in member order."""
        lines = "\n".join(f"  - {failure}" for failure in failures)
        super().__init__(f"{len(failures)} parallel step(s) failed:\n{lines}")
        self.failures = failures


class ScenarioFailure(SimulatorError):
    """The user visible result of a failed scenario."""

    def __init__(self, scenario: str, cause: Exception):
        """Build the report from the scenario name and the failure that stopped it."""
        kind = "scenario definition error" if _is_sequencing(cause) else "client failure"
        super().__init__(f"Scenario '{scenario}' failed ({kind}):\n{cause}")
        self.scenario = scenario
        self.cause = cause


def _is_sequencing(cause: Exception) -> bool:
    while isinstance(cause, StepFailure):
        cause = cause.cause
    if isinstance(cause, ParallelStepsError):
        return all(_is_sequencing(f) for f in cause.failures)
    return isinstance(cause, SequencingError)

"""Test the configuration and reporting helpers of the simulator plugin."""

from pathlib import Path
from typing import Any, Dict

import pytest

from engine_test_simulator import Scenario
from engine_test_simulator.steps import NewPayloads, SendBlobTransactions

from ..engine_simulator import describe_scenario, load_simulator_config


class Options:
    """Stand-in for `pytest.Config` answering `getoption`."""

    def __init__(self, **options: Any):
        """Store the option values by destination name."""
        self.options: Dict[str, Any] = {"get_payload_delay": None, "client_slots": None}
        self.options.update(options)

    def getoption(self, name: str) -> Any:
        """Return an option value."""
        return self.options[name]


@pytest.fixture
def env_file(tmp_path: Path) -> Path:
    """A configuration file setting the payload delay and the slots."""
    path = tmp_path / "env.yaml"
    path.write_text("simulator:\n  get_payload_delay: 1.5\n  client_slots: 2\n")
    return path


def test_config_from_file(env_file: Path):
    """Without command line overrides the file values are used."""
    config = load_simulator_config(Options(env_config=env_file))  # type: ignore[arg-type]
    assert config.get_payload_delay == 1.5
    assert config.client_slots == 2


def test_command_line_overrides(env_file: Path):
    """Command line values win over the file."""
    options = Options(env_config=env_file, get_payload_delay=0.0, client_slots=8)
    config = load_simulator_config(options)  # type: ignore[arg-type]
    assert config.get_payload_delay == 0.0
    assert config.client_slots == 8


def test_invalid_override(env_file: Path):
    """Overrides are validated like the file."""
    with pytest.raises(ValueError):
        load_simulator_config(Options(env_config=env_file, client_slots=0))  # type: ignore


def test_describe_scenario():
    """The hive description lists the steps in order, HTML escaped."""
    scenario = Scenario(
        name="Blobs <3",
        description="Two steps.",
        steps=[SendBlobTransactions(transaction_count=2), NewPayloads()],
    )
    description = describe_scenario(scenario)
    assert description.startswith("<b>Blobs &lt;3</b><br/>Two steps.")
    assert "1. <code>SendBlobTransactions(transaction_count=2)</code>" in description
    assert description.endswith("2. <code>NewPayloads()</code>")

"""
CLI entry point of the Engine API simulator.

Runs every scenario against the execution clients of a hive instance in `--dev` mode:

```
./hive --dev --client go-ethereum
export HIVE_SIMULATOR=http://127.0.0.1:3000
engine-sim -n 4 -k "blob"
```

Arguments are forwarded to pytest, so pytest and pytest-xdist flags can be used directly.
"""

import sys
from dataclasses import dataclass, field
from os.path import realpath
from pathlib import Path
from typing import List

import click
import pytest
from rich.console import Console

CURRENT_FOLDER = Path(realpath(__file__)).parent
PACKAGE_INSTALL_FOLDER = CURRENT_FOLDER.parent
PYTEST_INI_FOLDER = CURRENT_FOLDER / "pytest_ini_files"
SCENARIO_TEST_PATH = Path("pytest_plugins") / "engine_simulator" / "test_via_hive.py"


@dataclass(kw_only=True)
class PytestRunner:
    """Runs pytest with the simulator's configuration file and scenario module."""

    config_file: Path = PYTEST_INI_FOLDER / "pytest-engine.ini"
    """Pytest configuration loading the simulator plugins."""

    console: Console = field(default_factory=lambda: Console(highlight=False))
    """Console to use for output."""

    def arguments(self, args: List[str]) -> List[str]:
        """Return the full pytest command line for the given user arguments."""
        return [
            "-c",
            str(self.config_file),
            "--rootdir",
            str(PACKAGE_INSTALL_FOLDER),
            str(PACKAGE_INSTALL_FOLDER / SCENARIO_TEST_PATH),
            *args,
        ]

    def run(self, args: List[str]) -> int:
        """Run pytest and return its exit code."""
        pytest_args = self.arguments(args)
        if any(arg in ["-v", "--verbose", "-vv", "-vvv"] for arg in args):
            self.console.print(f"Executing: [bold]pytest {' '.join(pytest_args)}[/bold]")
        return pytest.main(pytest_args)


@click.command(context_settings={"ignore_unknown_options": True})
@click.option(
    "--pytest-help",
    "pytest_help_flag",
    is_flag=True,
    default=False,
    help="Show pytest's help message, including the simulator options.",
)
@click.argument("pytest_args", nargs=-1, type=click.UNPROCESSED)
def engine_sim(pytest_args: List[str], pytest_help_flag: bool) -> None:
    """Run the Engine API scenarios against the clients of a hive instance."""
    args = ["--help"] if pytest_help_flag else list(pytest_args)
    sys.exit(PytestRunner().run(args))

"""Command line interface for xdgm."""

from xdgm.cli.app import main, run_cli
from xdgm.cli.errors import CliError

__all__ = ["CliError", "main", "run_cli"]

"""Command-line surface for the patchgate pipeline."""

from patchgate.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]

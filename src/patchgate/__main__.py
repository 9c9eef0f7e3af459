"""Module entrypoint for ``python -m patchgate``."""

from __future__ import annotations

from patchgate.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())

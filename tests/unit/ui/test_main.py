"""
patchgate — unit tests for the process entrypoint exit-code contract

File: tests/unit/ui/test_main.py
Last updated: 2026-10-18

Purpose
- Verify that failures escaping the CLI router map onto stable process exit codes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import structlog

from patchgate.main import ExitCode, _normalize_exit_code, cli_entrypoint

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    yield
    structlog.reset_defaults()


def test_pipeline_errors_exit_with_input_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_entrypoint(["snapshot", str(tmp_path / "missing")])

    assert exit_code == ExitCode.INPUT_ERROR
    assert "WORKSPACE_ROOT_UNREADABLE" in capsys.readouterr().err


def test_config_errors_exit_with_config_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["config", "--config", str(tmp_path / "absent.toml")]) == ExitCode.CONFIG_ERROR
    assert "config file not found" in capsys.readouterr().err

    invalid = tmp_path / "invalid.toml"
    invalid.write_text("[plan]\nmax_hunks = 0\n", encoding="utf-8")
    assert cli_entrypoint(["config", "--config", str(invalid)]) == ExitCode.CONFIG_ERROR


def test_policy_errors_exit_with_config_error(tmp_path: Path) -> None:
    policy = tmp_path / "policy.yaml"
    policy.write_text("allow_apply: sometimes\n", encoding="utf-8")

    exit_code = cli_entrypoint(["apply", "bundle.json", str(tmp_path), "--policy", str(policy)])

    assert exit_code == ExitCode.CONFIG_ERROR


def test_argparse_errors_and_success(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["frobnicate"]) == ExitCode.CONFIG_ERROR
    assert cli_entrypoint(["--help"]) == ExitCode.SUCCESS
    assert "patchgate" in capsys.readouterr().out
    assert cli_entrypoint(["config"]) == ExitCode.SUCCESS


def test_unexpected_exceptions_exit_with_internal_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def _explode(argv: object) -> int:
        raise KeyError("boom")

    monkeypatch.setattr("patchgate.ui.cli.run_cli", _explode)

    assert cli_entrypoint([]) == ExitCode.INTERNAL_ERROR
    assert "Traceback" in capsys.readouterr().err


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(0, 0), (1, 1), (3, 3), (None, 0), (7, 4), ("fatal", 4), ("", 4), (True, 1)],
)
def test_normalize_exit_code(raw: object, expected: int) -> None:
    assert _normalize_exit_code(raw) == expected

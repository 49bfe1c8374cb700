"""Lint gate wrapper for local quality checks."""

from __future__ import annotations

import subprocess
import sys


def _run(cmd: list[str], label: str) -> None:
    print(f"[lint] {label}: {' '.join(cmd)}")
    result = subprocess.run(cmd)
    if result.returncode != 0:
        raise SystemExit(result.returncode)


def main() -> None:
    """Run ruff over the provisioning scripts, CLI helpers and tests."""
    _run([sys.executable, "-m", "ruff", "check", "cli", "scripts", "tests"], "python")

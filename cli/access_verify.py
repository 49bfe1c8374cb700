"""Cloudflare Access verification wrapper.

    uv run access-verify
    uv run access-verify --no-doppler

Runs scripts/verify_access.py under Doppler `local` config by default.
"""

from __future__ import annotations

import argparse
import sys

from cli._doppler import doppler_run_prefix, validate_doppler_config
from cli._runner import run


_VERIFY_MODULE = "scripts.verify_access"


def build_command(argv: list[str] | None = None) -> list[str]:
    parser = argparse.ArgumentParser(description="Verify Cloudflare Access for the MAHORAGA worker.")
    parser.add_argument("--config", default="local", help="Doppler config to use (default: local).")
    parser.add_argument(
        "--no-doppler", action="store_true", help="Run without Doppler (expects env vars already set)."
    )
    args = parser.parse_args(argv)

    cmd = [sys.executable, "-m", _VERIFY_MODULE]
    if args.no_doppler:
        return cmd
    return doppler_run_prefix(validate_doppler_config(args.config)) + cmd


def main():
    run(build_command())

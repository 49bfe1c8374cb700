"""Cloudflare Access bootstrap wrapper (Doppler + uv-friendly).

Provides a single command for onboarding (humans and agents):

    uv run access-setup --yes --verbose

By default, runs under Doppler `local` config to inject secrets.

This wrapper intentionally:
- Restricts passthrough args (only --yes/-y, --verbose and --dry-run)
- Avoids printing secrets
- Is safe to re-run because scripts/setup_access.py is idempotent
"""

from __future__ import annotations

import argparse
import sys

from cli._doppler import doppler_run_prefix, validate_doppler_config
from cli._runner import run


_SETUP_MODULE = "scripts.setup_access"


def build_command(argv: list[str] | None = None) -> list[str]:
    parser = argparse.ArgumentParser(
        description="Protect the MAHORAGA worker with Cloudflare Access (idempotent). "
        "Defaults to Doppler 'local' config."
    )
    parser.add_argument("--config", default="local", help="Doppler config to use (default: local).")
    parser.add_argument(
        "--no-doppler", action="store_true", help="Run without Doppler (expects env vars already set)."
    )
    parser.add_argument("--yes", "-y", action="store_true", help="Run without prompting")
    parser.add_argument("--verbose", action="store_true", help="Print each API request")
    parser.add_argument("--dry-run", action="store_true", help="Show planned changes only")
    args, unknown = parser.parse_known_args(argv)

    if unknown:
        raise SystemExit(
            f"Unsupported extra arguments: {' '.join(unknown)}\n"
            "Only --yes/-y, --verbose and --dry-run are forwarded to the underlying script."
        )

    script_args = []
    if args.yes:
        script_args.append("--yes")
    if args.verbose:
        script_args.append("--verbose")
    if args.dry_run:
        script_args.append("--dry-run")

    cmd = [sys.executable, "-m", _SETUP_MODULE, *script_args]
    if args.no_doppler:
        return cmd
    return doppler_run_prefix(validate_doppler_config(args.config)) + cmd


def main():
    run(build_command())

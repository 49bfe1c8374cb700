"""CLI scripts for MAHORAGA Cloudflare Access."""

from cli._doppler import doppler_run_prefix
from cli._runner import run

__all__ = ["doppler_run_prefix", "run"]

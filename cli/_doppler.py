"""Doppler utilities for CLI scripts."""

_DOPPLER_PROJECT = "mahoraga"
_ALLOWED_CONFIGS = {"local", "test", "prod"}


def doppler_run_prefix(config: str) -> list[str]:
    """Return the doppler run command prefix for a given config."""
    return [
        "doppler",
        "run",
        "--project",
        _DOPPLER_PROJECT,
        f"--config={config}",
        "--",
    ]


def validate_doppler_config(value: str) -> str:
    config = value.strip().lower()
    if config not in _ALLOWED_CONFIGS:
        raise SystemExit(
            f"Unsupported --config '{value}'. Allowed: {', '.join(sorted(_ALLOWED_CONFIGS))}"
        )
    return config

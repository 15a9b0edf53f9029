"""Entry point for the fleet-deployer CLI."""

from __future__ import annotations

import sys

from .cli import run_cli


def app_main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":  # pragma: no cover
    app_main()

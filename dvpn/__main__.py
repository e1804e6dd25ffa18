"""Module entry point so the client can be executed with ``python -m dvpn``."""

from __future__ import annotations

import sys

from .cli import main


def run() -> None:
    """Dispatch to :func:`dvpn.cli.main`."""

    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover - module execution hook
    run()

"""
txrace — Command line entry point

Reads ``RPC_URL``, ``WS_URL`` and ``PVT_KEY`` (a ``.env`` file is honoured),
runs one race and prints the result. Set ``TXRACE_LOG_LEVEL`` for library
logs on stderr.
"""

from __future__ import annotations

import asyncio
import logging
import os

from .bench import run_race
from .config import config_from_env
from .errors import TxRaceError
from .report import format_report


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("TXRACE_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("load env variables")
    try:
        config = config_from_env()
    except TxRaceError as e:
        raise SystemExit(f"error: {e}")

    try:
        report = asyncio.run(run_race(config, on_progress=print))
    except TxRaceError as e:
        raise SystemExit(f"error: {e}")

    for line in format_report(report):
        print(line)


if __name__ == "__main__":
    main()

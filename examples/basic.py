"""
basic.py -- Race one rpc transaction against one TPU transaction.

Reads RPC_URL, WS_URL and PVT_KEY from the environment (or a .env file).
"""

import asyncio

from txrace import TxRaceError, config_from_env, format_report, run_race


async def main() -> None:
    config = config_from_env()

    try:
        report = await run_race(config, on_progress=print)
    except TxRaceError as e:
        print(f"Race failed [{e.code}]: {e}")
        return

    for line in format_report(report):
        print(line)


if __name__ == "__main__":
    asyncio.run(main())

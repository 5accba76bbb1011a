"""
advanced_config.py -- Demonstrate all ConfigBuilder options.

Most users only need the three environment variables. This example shows
every available option and drives the runner step by step.
"""

import asyncio
import os

from txrace import RaceRunner, config_builder, format_report
from txrace.types import CommitmentLevel, ProtocolTimeouts


async def main() -> None:
    config = (
        config_builder()
        # Required
        .rpc_url(os.environ["RPC_URL"])
        .ws_url(os.environ["WS_URL"])
        .private_key(os.environ["PVT_KEY"])

        # Wait for "confirmed" instead of "finalized" (faster, less certain)
        .commitment(CommitmentLevel.CONFIRMED)

        # TPU warm-up sends before the timed pair
        .warmup_count(5)

        # Send to the leaders of the next 8 slots
        .fanout_slots(8)

        # Confirmation polling
        .poll_interval(500)      # every 500ms
        .poll_timeout(60_000)    # give up after 60s

        # Let the rpc path skip preflight simulation too
        .skip_preflight(True)

        # Protocol timeouts
        .protocol_timeouts(ProtocolTimeouts(
            websocket=5_000,  # 5s slot subscription timeout
            http=10_000,      # 10s JSON-RPC timeout
            quic=3_000,       # 3s leader QUIC handshake timeout
        ))

        .build()
    )
    print(config)

    runner = RaceRunner(config)
    runner.on("progress", print)
    runner.on("submitted", lambda o: print(f"  [{o.path.value}] {o.state.value}"))

    report = await runner.run()
    for line in format_report(report):
        print(line)


if __name__ == "__main__":
    asyncio.run(main())

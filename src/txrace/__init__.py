"""
txrace — RPC vs TPU transaction landing race

Sends the same memo transaction through a JSON-RPC node and directly to the
current leaders' TPU, then reports which one landed first and where each
sits inside the confirming block.

Example::

    from txrace import config_from_env, format_report, run_race

    config = config_from_env()  # RPC_URL, WS_URL, PVT_KEY
    report = await run_race(config, on_progress=print)

    for line in format_report(report):
        print(line)
"""

__version__ = "0.1.0"

# Runner
from .bench import BenchContext, RaceRunner, run_race

# Clients
from .rpc_transport import RpcTransport
from .tpu_client import TpuClient
from .ws_transport import SlotStream

# Configuration
from .config import ConfigBuilder, config_builder, config_from_env, load_signer

# Error types
from .errors import TxRaceError

# Transactions
from .transaction import MEMO_PROGRAM_ID, build_memo, build_test_transaction

# Leader tracking (advanced usage)
from .leader_tracker import LeaderTpuCache, RecentLeaderSlots

# Reporting
from .report import format_report, landed_first

# Types — re-export all
from .types import (
    BenchConfig,
    BlockRecord,
    CommitmentLevel,
    ContactInfo,
    LatestBlockhash,
    ProtocolTimeouts,
    RaceReport,
    SignatureStatus,
    SubmissionOutcome,
    SubmissionPath,
    SubmissionState,
)

__all__ = [
    "__version__",
    # Runner
    "BenchContext",
    "RaceRunner",
    "run_race",
    # Clients
    "RpcTransport",
    "TpuClient",
    "SlotStream",
    # Config
    "ConfigBuilder",
    "config_builder",
    "config_from_env",
    "load_signer",
    # Errors
    "TxRaceError",
    # Transactions
    "MEMO_PROGRAM_ID",
    "build_memo",
    "build_test_transaction",
    # Leaders
    "LeaderTpuCache",
    "RecentLeaderSlots",
    # Reporting
    "format_report",
    "landed_first",
    # Types
    "BenchConfig",
    "BlockRecord",
    "CommitmentLevel",
    "ContactInfo",
    "LatestBlockhash",
    "ProtocolTimeouts",
    "RaceReport",
    "SignatureStatus",
    "SubmissionOutcome",
    "SubmissionPath",
    "SubmissionState",
]

"""
txrace — Type definitions

Dataclasses and enums shared by the transports, the TPU client and the
race runner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from solders.hash import Hash
from solders.signature import Signature


# =============================================================================
# Configuration
# =============================================================================


class CommitmentLevel(str, Enum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    def is_satisfied_by(self, status: Optional[str]) -> bool:
        """Whether a reported ``confirmationStatus`` meets this commitment."""
        if status is None:
            return False
        order = [CommitmentLevel.PROCESSED, CommitmentLevel.CONFIRMED, CommitmentLevel.FINALIZED]
        try:
            reached = CommitmentLevel(status)
        except ValueError:
            return False
        return order.index(reached) >= order.index(self)


@dataclass
class ProtocolTimeouts:
    websocket: int = 10_000
    http: int = 30_000
    quic: int = 5_000


@dataclass
class BenchConfig:
    rpc_url: str
    ws_url: str
    private_key: str
    commitment: CommitmentLevel = CommitmentLevel.FINALIZED
    warmup_count: int = 3
    fanout_slots: int = 12
    poll_interval_ms: int = 250
    poll_timeout_ms: int = 30_000
    skip_preflight: bool = False
    protocol_timeouts: ProtocolTimeouts = field(default_factory=ProtocolTimeouts)

    def __repr__(self) -> str:
        return (
            f"BenchConfig(rpc_url={self.rpc_url!r}, ws_url={self.ws_url!r}, "
            f"private_key='***', commitment={self.commitment.value!r}, "
            f"warmup_count={self.warmup_count}, fanout_slots={self.fanout_slots})"
        )


# =============================================================================
# Ledger
# =============================================================================


@dataclass
class LatestBlockhash:
    blockhash: Hash
    last_valid_block_height: int = 0


@dataclass
class SignatureStatus:
    slot: int
    confirmations: Optional[int] = None
    confirmation_status: Optional[str] = None
    err: Optional[Any] = None


@dataclass
class ContactInfo:
    pubkey: str
    gossip: Optional[str] = None
    tpu: Optional[str] = None
    tpu_quic: Optional[str] = None
    version: Optional[str] = None


@dataclass
class BlockRecord:
    """Ordered first-signatures of every transaction in a block.

    Entries that could not be decoded are ``None`` so that positions are
    preserved.
    """

    slot: int
    blockhash: str = ""
    signatures: List[Optional[Signature]] = field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return len(self.signatures)

    def index_of(self, signature: Signature) -> Optional[int]:
        for i, sig in enumerate(self.signatures):
            if sig is not None and sig == signature:
                return i
        return None


# =============================================================================
# Submission
# =============================================================================


class SubmissionPath(str, Enum):
    RPC = "rpc"
    QUIC = "quic"


class SubmissionState(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass
class SubmissionOutcome:
    path: SubmissionPath
    signature: Signature
    state: SubmissionState = SubmissionState.UNKNOWN
    error: Optional[str] = None
    elapsed_ms: float = 0.0
    destinations: int = 0


@dataclass
class RaceReport:
    rpc: SubmissionOutcome
    quic: SubmissionOutcome
    rpc_slot: Optional[int] = None
    quic_slot: Optional[int] = None
    rpc_index: Optional[int] = None
    quic_index: Optional[int] = None
    transaction_count: Optional[int] = None
    block_error: Optional[str] = None
    signer_balance: Optional[int] = None

    @property
    def same_slot(self) -> bool:
        return self.rpc_slot is not None and self.rpc_slot == self.quic_slot


# Host/port pair for a TPU ingest socket
SocketAddr = Tuple[str, int]

"""
txrace — JSON-RPC Transport

Uses aiohttp for all Solana JSON-RPC calls.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from .errors import TxRaceError
from .types import (
    BlockRecord,
    CommitmentLevel,
    ContactInfo,
    LatestBlockhash,
    SignatureStatus,
)

logger = logging.getLogger("txrace.rpc")


class RpcTransport:
    """Solana JSON-RPC client over a single aiohttp session."""

    def __init__(
        self,
        url: str,
        commitment: CommitmentLevel = CommitmentLevel.FINALIZED,
        timeout_ms: int = 30_000,
    ) -> None:
        self._url = url
        self._commitment = commitment
        self._timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    @property
    def url(self) -> str:
        return self._url

    @property
    def commitment(self) -> CommitmentLevel:
        return self._commitment

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        session = await self._ensure_session()
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            async with session.post(self._url, json=body) as resp:
                if resp.status == 429:
                    raise TxRaceError.rate_limited()
                if not (200 <= resp.status < 300):
                    error_text = await resp.text()
                    raise TxRaceError.internal(
                        f"HTTP {resp.status}: {error_text or resp.reason}"
                    )
                data = await resp.json(content_type=None)
        except TxRaceError:
            raise
        except asyncio.TimeoutError as e:
            raise TxRaceError.timeout(int(self._timeout.total * 1000)) from e
        except aiohttp.ClientError as e:
            raise TxRaceError.connection(f"RPC request {method} failed: {e}") from e
        except ValueError as e:
            raise TxRaceError.internal(f"Malformed {method} response: {e}") from e

        if not isinstance(data, dict):
            raise TxRaceError.internal(f"Malformed {method} response: {data!r}")

        error = data.get("error")
        if error:
            raise TxRaceError.rpc(
                error.get("code", 0), error.get("message", ""), error.get("data")
            )
        return data.get("result")

    def _commitment_config(self, commitment: Optional[CommitmentLevel] = None) -> Dict[str, str]:
        return {"commitment": (commitment or self._commitment).value}

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_latest_blockhash(
        self, commitment: Optional[CommitmentLevel] = None
    ) -> LatestBlockhash:
        result = await self._request(
            "getLatestBlockhash", [self._commitment_config(commitment)]
        )
        value = result.get("value", {})
        return LatestBlockhash(
            blockhash=Hash.from_string(value["blockhash"]),
            last_valid_block_height=value.get("lastValidBlockHeight", 0),
        )

    async def get_balance(self, pubkey: Pubkey) -> int:
        result = await self._request(
            "getBalance", [str(pubkey), self._commitment_config()]
        )
        return result.get("value", 0)

    # =========================================================================
    # Transaction
    # =========================================================================

    async def send_transaction(
        self, transaction: Transaction, skip_preflight: bool = False
    ) -> Signature:
        wire = base64.b64encode(bytes(transaction)).decode("ascii")
        result = await self._request(
            "sendTransaction",
            [
                wire,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self._commitment.value,
                },
            ],
        )
        signature = Signature.from_string(result)
        if signature != transaction.signatures[0]:
            raise TxRaceError.transaction(
                f"RPC returned signature {signature}, expected {transaction.signatures[0]}"
            )
        return signature

    async def get_signature_statuses(
        self,
        signatures: Sequence[Signature],
        search_transaction_history: bool = False,
    ) -> List[Optional[SignatureStatus]]:
        result = await self._request(
            "getSignatureStatuses",
            [
                [str(s) for s in signatures],
                {"searchTransactionHistory": search_transaction_history},
            ],
        )
        return [_parse_signature_status(v) for v in result.get("value", [])]

    async def poll_for_signature(
        self,
        signature: Signature,
        commitment: Optional[CommitmentLevel] = None,
        interval_ms: int = 250,
        timeout_ms: int = 30_000,
    ) -> SignatureStatus:
        """Block until ``signature`` reaches ``commitment``.

        A transaction that landed with an error still counts as settled.
        Raises a ``TIMEOUT`` error if the commitment is not reached in time.
        """
        level = commitment or self._commitment
        deadline = time.monotonic() + timeout_ms / 1000

        while True:
            try:
                statuses = await self.get_signature_statuses([signature])
            except TxRaceError as e:
                if e.code not in ("CONNECTION", "RATE_LIMITED", "TIMEOUT"):
                    raise
                logger.debug("Status poll for %s failed: %s", signature, e)
                statuses = [None]

            status = statuses[0] if statuses else None
            if status is not None and level.is_satisfied_by(status.confirmation_status):
                return status

            if time.monotonic() >= deadline:
                raise TxRaceError.timeout(timeout_ms)
            await asyncio.sleep(interval_ms / 1000)

    # =========================================================================
    # Blocks and slots
    # =========================================================================

    async def get_block(
        self, slot: int, commitment: Optional[CommitmentLevel] = None
    ) -> BlockRecord:
        # getBlock rejects "processed"
        level = commitment or self._commitment
        if level == CommitmentLevel.PROCESSED:
            level = CommitmentLevel.CONFIRMED

        try:
            result = await self._request(
                "getBlock",
                [
                    slot,
                    {
                        "encoding": "base64",
                        "transactionDetails": "full",
                        "rewards": False,
                        "maxSupportedTransactionVersion": 0,
                        **self._commitment_config(level),
                    },
                ],
            )
        except TxRaceError as e:
            raise TxRaceError.block_fetch(slot, str(e)) from e

        if not isinstance(result, dict):
            raise TxRaceError.block_fetch(slot, "block not available")

        return BlockRecord(
            slot=slot,
            blockhash=result.get("blockhash", ""),
            signatures=[_first_signature(t) for t in result.get("transactions", [])],
        )

    async def get_slot(self, commitment: Optional[CommitmentLevel] = None) -> int:
        return await self._request("getSlot", [self._commitment_config(commitment)])

    async def get_slot_leaders(self, start_slot: int, limit: int) -> List[str]:
        return await self._request("getSlotLeaders", [start_slot, limit])

    async def get_cluster_nodes(self) -> List[ContactInfo]:
        nodes = await self._request("getClusterNodes")
        return [
            ContactInfo(
                pubkey=n.get("pubkey", ""),
                gossip=n.get("gossip"),
                tpu=n.get("tpu"),
                tpu_quic=n.get("tpuQuic"),
                version=n.get("version"),
            )
            for n in nodes or []
        ]


# =============================================================================
# Helpers
# =============================================================================


def _parse_signature_status(value: Optional[Dict[str, Any]]) -> Optional[SignatureStatus]:
    if value is None:
        return None
    return SignatureStatus(
        slot=value.get("slot", 0),
        confirmations=value.get("confirmations"),
        confirmation_status=value.get("confirmationStatus"),
        err=value.get("err"),
    )


def _first_signature(entry: Dict[str, Any]) -> Optional[Signature]:
    """Decode the first signature of a base64-encoded block transaction."""
    encoded = entry.get("transaction")
    if not isinstance(encoded, list) or not encoded:
        return None
    try:
        tx = VersionedTransaction.from_bytes(base64.b64decode(encoded[0]))
    except (ValueError, binascii.Error):
        logger.debug("Skipping undecodable block transaction")
        return None
    return tx.signatures[0] if tx.signatures else None

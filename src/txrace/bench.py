"""
txrace — Race runner

Sends one memo transaction through the RPC node and one straight to the
leaders' TPU, then reports the slot each landed in and, when they share a
slot, their positions inside the block.

Example::

    from txrace import RaceRunner, config_from_env

    runner = RaceRunner(config_from_env())
    runner.on("progress", print)
    report = await runner.run()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction import Transaction

from .config import load_signer
from .errors import TxRaceError
from .rpc_transport import RpcTransport
from .tpu_client import TpuClient
from .transaction import build_test_transaction
from .types import (
    BenchConfig,
    BlockRecord,
    RaceReport,
    SubmissionOutcome,
    SubmissionPath,
    SubmissionState,
)

logger = logging.getLogger("txrace.bench")

Callback = Callable[..., Any]

RPC_TAG = "rpc_"
QUIC_TAG = "quic"


@dataclass
class BenchContext:
    """Everything a run needs: the signer and one client per path."""

    config: BenchConfig
    signer: Keypair
    rpc: RpcTransport
    tpu: TpuClient

    @staticmethod
    async def create(config: BenchConfig) -> BenchContext:
        signer = load_signer(config)
        rpc = RpcTransport(
            config.rpc_url,
            config.commitment,
            config.protocol_timeouts.http,
        )
        try:
            tpu = await TpuClient.connect(config)
        except Exception:
            await rpc.close()
            raise
        return BenchContext(config=config, signer=signer, rpc=rpc, tpu=tpu)

    async def close(self) -> None:
        await self.tpu.close()
        await self.rpc.close()


class RaceRunner:
    """Runs a single rpc-vs-TPU race.

    Pass a ready :class:`BenchContext` to reuse clients (or mocks);
    otherwise one is created from ``config`` and closed after the run.
    """

    def __init__(
        self,
        config: BenchConfig,
        context: Optional[BenchContext] = None,
    ) -> None:
        self._config = config
        self._context = context
        self._owns_context = context is None
        self._listeners: Dict[str, List[Callback]] = {}

    # =========================================================================
    # Event emitter
    # =========================================================================

    def on(self, event: str, callback: Callback) -> None:
        """Register an event listener.

        Events: ``progress``, ``signatures``, ``submitted``, ``report``
        """
        if event not in self._listeners:
            self._listeners[event] = []
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Callback) -> None:
        """Remove an event listener."""
        if event in self._listeners:
            self._listeners[event] = [
                cb for cb in self._listeners[event] if cb is not callback
            ]

    def _emit(self, event: str, *args: Any) -> None:
        for cb in self._listeners.get(event, []):
            try:
                cb(*args)
            except Exception:
                logger.exception("Error in event listener for %s", event)

    def _progress(self, message: str) -> None:
        logger.debug(message)
        self._emit("progress", message)

    # =========================================================================
    # Setup
    # =========================================================================

    @property
    def context(self) -> BenchContext:
        if self._context is None:
            raise TxRaceError.not_connected()
        return self._context

    async def _ensure_context(self) -> BenchContext:
        if self._context is None:
            self._progress("building tpu client")
            self._context = await BenchContext.create(self._config)
        return self._context

    async def _signer_balance(self) -> Optional[int]:
        ctx = self.context
        pubkey = ctx.signer.pubkey()
        try:
            balance = await ctx.rpc.get_balance(pubkey)
        except TxRaceError as e:
            logger.debug("Balance lookup failed: %s", e)
            self._progress("error fetching signer balance")
            return None
        self._progress(f"signer {pubkey} balance: {balance} lamports")
        return balance

    # =========================================================================
    # Steps
    # =========================================================================

    async def warm_up(self) -> int:
        """Push throwaway transactions through the TPU client.

        Send failures are ignored; returns the number of sends attempted.
        """
        ctx = self.context
        attempts = 0
        for i in range(self._config.warmup_count):
            latest = await ctx.rpc.get_latest_blockhash()
            tx = build_test_transaction(latest.blockhash, ctx.signer, f"quic warm up {i}")
            attempts += 1
            try:
                await ctx.tpu.send_transaction(tx)
            except Exception as e:
                logger.debug("Warm-up send %d failed: %s", i, e)
        return attempts

    async def dispatch(
        self, rpc_tx: Transaction, quic_tx: Transaction
    ) -> Tuple[SubmissionOutcome, SubmissionOutcome]:
        """Send both transactions concurrently and wait for both sends."""
        ctx = self.context
        rpc_outcome, quic_outcome = await asyncio.gather(
            self._submit(
                SubmissionPath.RPC,
                rpc_tx,
                lambda tx: ctx.rpc.send_transaction(tx, self._config.skip_preflight),
            ),
            self._submit(SubmissionPath.QUIC, quic_tx, ctx.tpu.send_transaction),
        )
        return rpc_outcome, quic_outcome

    async def _submit(
        self,
        path: SubmissionPath,
        transaction: Transaction,
        send: Callable[[Transaction], Awaitable[Any]],
    ) -> SubmissionOutcome:
        outcome = SubmissionOutcome(path=path, signature=transaction.signatures[0])
        self._progress(f"send tx via {path.value}")
        start = time.perf_counter()

        try:
            result = await send(transaction)
        except TxRaceError as e:
            # A timed out send may still have reached the cluster
            outcome.state = (
                SubmissionState.UNKNOWN if e.code == "TIMEOUT" else SubmissionState.FAILED
            )
            outcome.error = str(e)
        except Exception as e:
            outcome.state = SubmissionState.FAILED
            outcome.error = str(e)
        else:
            outcome.state = SubmissionState.SENT
            outcome.destinations = result if isinstance(result, int) else 1

        outcome.elapsed_ms = (time.perf_counter() - start) * 1000
        if outcome.error:
            logger.warning("%s submission %s: %s", path.value, outcome.state.value, outcome.error)
        self._emit("submitted", outcome)
        return outcome

    async def await_confirmations(self, signatures: Sequence[Signature]) -> List[bool]:
        """Poll each signature in order; a timeout is logged, not raised."""
        ctx = self.context
        settled = []
        for signature in signatures:
            try:
                await ctx.rpc.poll_for_signature(
                    signature,
                    self._config.commitment,
                    self._config.poll_interval_ms,
                    self._config.poll_timeout_ms,
                )
                settled.append(True)
            except TxRaceError as e:
                logger.warning("Signature %s not confirmed: %s", signature, e)
                settled.append(False)
        return settled

    async def fetch_slots(
        self, rpc_sig: Signature, quic_sig: Signature
    ) -> Tuple[Optional[int], Optional[int]]:
        statuses = await self.context.rpc.get_signature_statuses([rpc_sig, quic_sig])
        padded = list(statuses) + [None] * (2 - len(statuses))
        rpc_status, quic_status = padded[0], padded[1]
        return (
            rpc_status.slot if rpc_status is not None else None,
            quic_status.slot if quic_status is not None else None,
        )

    async def locate_in_block(self, slot: int) -> BlockRecord:
        return await self.context.rpc.get_block(slot)

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self) -> RaceReport:
        ctx = await self._ensure_context()
        try:
            report = await self._run(ctx)
        finally:
            if self._owns_context:
                await ctx.close()
                self._context = None

        self._emit("report", report)
        return report

    async def _run(self, ctx: BenchContext) -> RaceReport:
        balance = await self._signer_balance()

        self._progress("warm up tpu client")
        await self.warm_up()

        self._progress("building test txs")
        latest = await ctx.rpc.get_latest_blockhash()
        rpc_tx = build_test_transaction(latest.blockhash, ctx.signer, RPC_TAG)
        quic_tx = build_test_transaction(latest.blockhash, ctx.signer, QUIC_TAG)
        rpc_sig = rpc_tx.signatures[0]
        quic_sig = quic_tx.signatures[0]
        self._progress(f"+ rpc signature: {rpc_sig}")
        self._progress(f"+ quic signature: {quic_sig}")
        self._emit("signatures", rpc_sig, quic_sig)

        rpc_outcome, quic_outcome = await self.dispatch(rpc_tx, quic_tx)
        report = RaceReport(rpc=rpc_outcome, quic=quic_outcome, signer_balance=balance)

        self._progress("poll txs confirmations")
        await self.await_confirmations([rpc_sig, quic_sig])

        self._progress("get sigs statuses")
        report.rpc_slot, report.quic_slot = await self.fetch_slots(rpc_sig, quic_sig)

        shared_slot = report.rpc_slot if report.same_slot else None
        if shared_slot is not None:
            try:
                block = await self.locate_in_block(shared_slot)
            except TxRaceError as e:
                logger.warning("%s", e)
                report.block_error = str(e)
            else:
                report.transaction_count = block.transaction_count
                report.rpc_index = block.index_of(rpc_sig)
                report.quic_index = block.index_of(quic_sig)

        return report


async def run_race(
    config: BenchConfig,
    on_progress: Optional[Callable[[str], Any]] = None,
) -> RaceReport:
    """Run one race with fresh clients and return its report."""
    runner = RaceRunner(config)
    if on_progress is not None:
        runner.on("progress", on_progress)
    return await runner.run()

"""
txrace — TPU Client

Pushes signed transactions straight to the TPU QUIC sockets of the current
and upcoming leaders, bypassing the RPC node's relay. Uses aioquic.

Example::

    from txrace import TpuClient, config_from_env

    config = config_from_env()
    tpu = await TpuClient.connect(config)
    sent_to = await tpu.send_transaction(tx)
    await tpu.close()
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import ssl
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional, Tuple

from aioquic.asyncio import QuicConnectionProtocol
from aioquic.asyncio import connect as quic_connect
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import ConnectionTerminated, QuicEvent
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.x509.oid import NameOID
from solders.transaction import Transaction

from .errors import TxRaceError
from .leader_tracker import LeaderTpuCache, RecentLeaderSlots
from .rpc_transport import RpcTransport
from .types import BenchConfig, CommitmentLevel, SocketAddr
from .ws_transport import SlotStream

logger = logging.getLogger("txrace.tpu")

# Leaders fetched per schedule refresh
LEADER_WINDOW_SLOTS = 200

ALPN_TPU = "solana-tpu"

# Validators do not check SNI
QUIC_SERVER_NAME = "connect"


def build_client_certificate() -> Tuple[x509.Certificate, Ed25519PrivateKey]:
    """Self-signed Ed25519 certificate presented to validators.

    An unknown key makes the connection unstaked, which validators accept
    with a reduced stream budget.
    """
    key = Ed25519PrivateKey.generate()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Solana node")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False)
        .sign(key, None)
    )
    return cert, key


def build_quic_configuration(idle_timeout_ms: int) -> QuicConfiguration:
    cert, key = build_client_certificate()
    configuration = QuicConfiguration(
        is_client=True,
        alpn_protocols=[ALPN_TPU],
        verify_mode=ssl.CERT_NONE,
        server_name=QUIC_SERVER_NAME,
        idle_timeout=idle_timeout_ms / 1000,
    )
    configuration.certificate = cert
    configuration.private_key = key
    return configuration


class TpuConnection(QuicConnectionProtocol):
    """QUIC connection to one leader; every transaction gets its own uni stream."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.terminated = False

    def quic_event_received(self, event: QuicEvent) -> None:
        if isinstance(event, ConnectionTerminated):
            self.terminated = True
            logger.debug(
                "TPU connection closed (code %s): %s", event.error_code, event.reason_phrase
            )

    def send_transaction(self, wire: bytes) -> None:
        stream_id = self._quic.get_next_available_stream_id(is_unidirectional=True)
        self._quic.send_stream_data(stream_id, wire, end_stream=True)
        self.transmit()


class TpuClient:
    """Leader-streaming transaction sender.

    Use :meth:`connect` to create a ready instance::

        tpu = await TpuClient.connect(config)
    """

    def __init__(
        self,
        rpc: RpcTransport,
        ws_url: str,
        fanout_slots: int = 12,
        ws_timeout_ms: int = 10_000,
        quic_timeout_ms: int = 5_000,
        owns_rpc: bool = False,
    ) -> None:
        self._rpc = rpc
        self._owns_rpc = owns_rpc
        self._fanout_slots = fanout_slots
        self._quic_timeout_ms = quic_timeout_ms
        self._slot_stream = SlotStream(ws_url, ws_timeout_ms)
        self._recent_slots: Optional[RecentLeaderSlots] = None
        self._leader_cache: Optional[LeaderTpuCache] = None
        self._quic_config: Optional[QuicConfiguration] = None
        self._connections: Dict[SocketAddr, TpuConnection] = {}
        self._exit_stack = AsyncExitStack()
        self._refresh_lock = asyncio.Lock()

        self._slot_stream.on("slot", self._on_slot)

    @staticmethod
    async def connect(config: BenchConfig) -> TpuClient:
        """Build a TPU client with its own RPC connection.

        Fetches the leader schedule and subscribes to slot updates on
        ``config.ws_url``. Leader connections are opened on first send.
        Any failure here is raised to the caller.
        """
        rpc = RpcTransport(
            config.rpc_url,
            config.commitment,
            config.protocol_timeouts.http,
        )
        client = TpuClient(
            rpc,
            config.ws_url,
            config.fanout_slots,
            config.protocol_timeouts.websocket,
            config.protocol_timeouts.quic,
            owns_rpc=True,
        )
        try:
            await client._start()
        except Exception:
            await client.close()
            raise
        return client

    async def _start(self) -> None:
        current_slot = await self._rpc.get_slot(CommitmentLevel.PROCESSED)
        self._recent_slots = RecentLeaderSlots(current_slot)
        await self._refresh_leaders(current_slot)
        await self._slot_stream.connect()

        self._quic_config = build_quic_configuration(self._quic_timeout_ms)
        logger.info(
            "TPU client ready at slot %d (%d leaders with QUIC addresses)",
            current_slot,
            self._leader_cache.known_leaders if self._leader_cache else 0,
        )

    def _on_slot(self, slot: int) -> None:
        if self._recent_slots is not None:
            self._recent_slots.record_slot(slot)

    async def _refresh_leaders(self, start_slot: int) -> LeaderTpuCache:
        leaders = await self._rpc.get_slot_leaders(start_slot, LEADER_WINDOW_SLOTS)
        if not leaders:
            raise TxRaceError.leader_schedule(f"No leaders returned from slot {start_slot}")
        nodes = await self._rpc.get_cluster_nodes()
        self._leader_cache = LeaderTpuCache(start_slot, leaders, nodes)
        logger.debug(
            "Leader window refreshed: slots %d-%d", start_slot, self._leader_cache.last_slot
        )
        return self._leader_cache

    @property
    def fanout_slots(self) -> int:
        return self._fanout_slots

    def estimated_current_slot(self) -> int:
        if self._recent_slots is None:
            raise TxRaceError.not_connected()
        return self._recent_slots.estimated_current_slot()

    async def leader_sockets(self) -> List[SocketAddr]:
        """TPU QUIC sockets of the leaders for the next ``fanout_slots`` slots."""
        slot = self.estimated_current_slot()
        cache = self._leader_cache
        if cache is None or cache.needs_refresh(slot, self._fanout_slots):
            async with self._refresh_lock:
                cache = self._leader_cache
                if cache is None or cache.needs_refresh(slot, self._fanout_slots):
                    cache = await self._refresh_leaders(slot)

        return cache.get_leader_sockets(slot, self._fanout_slots)

    # =========================================================================
    # Connections
    # =========================================================================

    async def _open_connection(self, addr: SocketAddr) -> TpuConnection:
        host, port = addr
        connection = await asyncio.wait_for(
            self._exit_stack.enter_async_context(
                quic_connect(
                    host,
                    port,
                    configuration=self._quic_config,
                    create_protocol=TpuConnection,
                )
            ),
            timeout=self._quic_timeout_ms / 1000,
        )
        logger.debug("QUIC connection to %s:%d established", host, port)
        return connection

    async def _get_connection(self, addr: SocketAddr) -> TpuConnection:
        connection = self._connections.get(addr)
        if connection is None or connection.terminated:
            connection = await self._open_connection(addr)
            self._connections[addr] = connection
        return connection

    async def _send_to(self, addr: SocketAddr, wire: bytes) -> None:
        connection = await self._get_connection(addr)
        connection.send_transaction(wire)

    # =========================================================================
    # Transaction Submission
    # =========================================================================

    async def send_transaction(self, transaction: Transaction) -> int:
        """Send a signed transaction; returns the number of leaders reached."""
        return await self.send_wire_transaction(bytes(transaction))

    async def send_wire_transaction(self, wire: bytes) -> int:
        if self._quic_config is None:
            raise TxRaceError.not_connected()

        sockets = await self.leader_sockets()
        if not sockets:
            raise TxRaceError.leader_schedule("No TPU QUIC address known for upcoming leaders")

        results = await asyncio.gather(
            *(self._send_to(addr, wire) for addr in sockets), return_exceptions=True
        )
        reached = 0
        for (host, port), result in zip(sockets, results):
            if isinstance(result, BaseException):
                logger.debug("QUIC send to %s:%d failed: %r", host, port, result)
            else:
                reached += 1

        if not reached:
            raise TxRaceError.connection(
                f"No leader accepted a QUIC stream ({len(sockets)} tried)"
            )
        logger.debug("Sent %d bytes to %d/%d leaders", len(wire), reached, len(sockets))
        return reached

    async def close(self) -> None:
        await self._slot_stream.disconnect()
        self._quic_config = None
        self._connections.clear()
        await self._exit_stack.aclose()
        if self._owns_rpc:
            await self._rpc.close()

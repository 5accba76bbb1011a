"""
txrace — Leader tracking

Estimates the current slot from recent slot notifications and maps the
leaders of upcoming slots to their TPU QUIC sockets.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional

from .types import ContactInfo, SocketAddr

logger = logging.getLogger("txrace.leaders")

# Slots observed before the estimate stabilises
MAX_RECENT_SLOTS = 12

# Slot samples further than this past the median are treated as bogus
MAX_SLOT_SKIP_DISTANCE = 48


class RecentLeaderSlots:
    """Sliding window of recently observed slots."""

    def __init__(self, current_slot: int) -> None:
        self._slots: Deque[int] = deque([current_slot], maxlen=MAX_RECENT_SLOTS)

    def record_slot(self, slot: int) -> None:
        self._slots.append(slot)

    def estimated_current_slot(self) -> int:
        """Highest recent slot that is not unreasonably far ahead.

        A single node reporting a slot far in the future must not drag the
        fanout window past the real leaders.
        """
        recent = sorted(self._slots)
        max_index = len(recent) - 1
        median_index = max_index // 2
        expected_current = recent[median_index] + (max_index - median_index)
        max_reasonable = expected_current + MAX_SLOT_SKIP_DISTANCE

        for slot in reversed(recent):
            if slot <= max_reasonable:
                return slot
        return recent[0]


def parse_socket_addr(addr: Optional[str]) -> Optional[SocketAddr]:
    """Parse ``host:port`` (IPv6 hosts may be bracketed)."""
    if not addr:
        return None
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        return None
    return host.strip("[]"), int(port)


class LeaderTpuCache:
    """Leader schedule window starting at ``first_slot`` plus TPU QUIC sockets."""

    def __init__(
        self,
        first_slot: int,
        leaders: List[str],
        nodes: Iterable[ContactInfo],
    ) -> None:
        self.first_slot = first_slot
        self._leaders = leaders
        self._tpu_sockets: Dict[str, SocketAddr] = {}
        for node in nodes:
            socket = parse_socket_addr(node.tpu_quic)
            if socket:
                self._tpu_sockets[node.pubkey] = socket

    @property
    def last_slot(self) -> int:
        return self.first_slot + max(len(self._leaders), 1) - 1

    @property
    def known_leaders(self) -> int:
        return len(self._tpu_sockets)

    def needs_refresh(self, estimated_current_slot: int, fanout_slots: int) -> bool:
        return (
            estimated_current_slot < self.first_slot
            or estimated_current_slot + fanout_slots - 1 > self.last_slot
        )

    def leader_for_slot(self, slot: int) -> Optional[str]:
        index = slot - self.first_slot
        if 0 <= index < len(self._leaders):
            return self._leaders[index]
        return None

    def get_leader_sockets(
        self, estimated_current_slot: int, fanout_slots: int
    ) -> List[SocketAddr]:
        """Unique TPU QUIC sockets for the leaders of the next ``fanout_slots`` slots."""
        sockets: List[SocketAddr] = []
        for slot in range(estimated_current_slot, estimated_current_slot + fanout_slots):
            leader = self.leader_for_slot(slot)
            if leader is None:
                continue
            socket = self._tpu_sockets.get(leader)
            if socket is None:
                logger.debug("Leader %s for slot %d has no TPU QUIC address", leader, slot)
                continue
            if socket not in sockets:
                sockets.append(socket)
        return sockets

"""
txrace — Error types
"""

from __future__ import annotations

from typing import Optional


class TxRaceError(Exception):
    """Base error for all txrace errors."""

    def __init__(self, code: str, message: str, details: Optional[object] = None):
        super().__init__(message)
        self.code = code
        self.details = details

    @staticmethod
    def config(msg: str) -> TxRaceError:
        return TxRaceError("CONFIG", msg)

    @staticmethod
    def connection(msg: str) -> TxRaceError:
        return TxRaceError("CONNECTION", msg)

    @staticmethod
    def rpc(code: int, msg: str, data: Optional[object] = None) -> TxRaceError:
        return TxRaceError("RPC", f"RPC error {code}: {msg}", {"code": code, "data": data})

    @staticmethod
    def transaction(msg: str) -> TxRaceError:
        return TxRaceError("TRANSACTION", msg)

    @staticmethod
    def timeout(ms: int) -> TxRaceError:
        return TxRaceError("TIMEOUT", f"Operation timed out after {ms}ms")

    @staticmethod
    def rate_limited(msg: str = "Rate limited") -> TxRaceError:
        return TxRaceError("RATE_LIMITED", msg)

    @staticmethod
    def leader_schedule(msg: str) -> TxRaceError:
        return TxRaceError("LEADER_SCHEDULE", msg)

    @staticmethod
    def block_fetch(slot: int, msg: str) -> TxRaceError:
        return TxRaceError("BLOCK_FETCH", f"Failed to fetch block {slot}: {msg}", {"slot": slot})

    @staticmethod
    def not_connected() -> TxRaceError:
        return TxRaceError("NOT_CONNECTED", "Client is not connected")

    @staticmethod
    def internal(msg: str) -> TxRaceError:
        return TxRaceError("INTERNAL", msg)

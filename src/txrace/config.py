"""
txrace — Configuration builder and environment loader
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

import base58
from dotenv import load_dotenv
from solders.keypair import Keypair

from .errors import TxRaceError
from .types import BenchConfig, CommitmentLevel, ProtocolTimeouts

ENV_RPC_URL = "RPC_URL"
ENV_WS_URL = "WS_URL"
ENV_PRIVATE_KEY = "PVT_KEY"

REQUIRED_ENV = (ENV_RPC_URL, ENV_WS_URL, ENV_PRIVATE_KEY)

MAX_FANOUT_SLOTS = 100


class ConfigBuilder:
    """Fluent configuration builder for a race run."""

    def __init__(self) -> None:
        self._rpc_url: Optional[str] = None
        self._ws_url: Optional[str] = None
        self._private_key: Optional[str] = None
        self._commitment: CommitmentLevel = CommitmentLevel.FINALIZED
        self._warmup_count: int = 3
        self._fanout_slots: int = 12
        self._poll_interval_ms: int = 250
        self._poll_timeout_ms: int = 30_000
        self._skip_preflight: bool = False
        self._protocol_timeouts: ProtocolTimeouts = ProtocolTimeouts()

    def rpc_url(self, url: str) -> ConfigBuilder:
        self._rpc_url = url
        return self

    def ws_url(self, url: str) -> ConfigBuilder:
        self._ws_url = url
        return self

    def private_key(self, key: str) -> ConfigBuilder:
        self._private_key = key
        return self

    def commitment(self, level: CommitmentLevel) -> ConfigBuilder:
        self._commitment = level
        return self

    def warmup_count(self, n: int) -> ConfigBuilder:
        self._warmup_count = n
        return self

    def fanout_slots(self, n: int) -> ConfigBuilder:
        self._fanout_slots = n
        return self

    def poll_interval(self, ms: int) -> ConfigBuilder:
        self._poll_interval_ms = ms
        return self

    def poll_timeout(self, ms: int) -> ConfigBuilder:
        self._poll_timeout_ms = ms
        return self

    def skip_preflight(self, enabled: bool) -> ConfigBuilder:
        """Skip the RPC node's preflight simulation on the rpc path."""
        self._skip_preflight = enabled
        return self

    def protocol_timeouts(self, timeouts: ProtocolTimeouts) -> ConfigBuilder:
        self._protocol_timeouts = timeouts
        return self

    def build(self) -> BenchConfig:
        # Checked in the order the variables are documented
        if not self._rpc_url:
            raise TxRaceError.config(f"{ENV_RPC_URL} must be set")
        if not self._ws_url:
            raise TxRaceError.config(f"{ENV_WS_URL} must be set")
        if not self._private_key:
            raise TxRaceError.config(f"{ENV_PRIVATE_KEY} must be set")

        if self._warmup_count < 0:
            raise TxRaceError.config("warmup_count must not be negative")
        if self._fanout_slots < 1 or self._fanout_slots > MAX_FANOUT_SLOTS:
            raise TxRaceError.config(
                f"fanout_slots must be between 1 and {MAX_FANOUT_SLOTS}"
            )
        if self._poll_interval_ms <= 0 or self._poll_timeout_ms <= 0:
            raise TxRaceError.config("poll interval and timeout must be positive")

        return BenchConfig(
            rpc_url=self._rpc_url,
            ws_url=self._ws_url,
            private_key=self._private_key,
            commitment=self._commitment,
            warmup_count=self._warmup_count,
            fanout_slots=self._fanout_slots,
            poll_interval_ms=self._poll_interval_ms,
            poll_timeout_ms=self._poll_timeout_ms,
            skip_preflight=self._skip_preflight,
            protocol_timeouts=self._protocol_timeouts,
        )


def config_builder() -> ConfigBuilder:
    """Create a new ConfigBuilder instance."""
    return ConfigBuilder()


def config_from_env(
    environ: Optional[Mapping[str, str]] = None,
    dotenv: bool = True,
) -> BenchConfig:
    """Build a config from ``RPC_URL``, ``WS_URL`` and ``PVT_KEY``.

    When ``environ`` is omitted the process environment is used, after
    loading a ``.env`` file from the working directory if one exists.
    Raises :class:`TxRaceError` naming the first missing variable.
    """
    if environ is None:
        if dotenv:
            load_dotenv()
        environ = os.environ

    for name in REQUIRED_ENV:
        if not environ.get(name):
            raise TxRaceError.config(f"{name} must be set")

    return (
        config_builder()
        .rpc_url(environ[ENV_RPC_URL])
        .ws_url(environ[ENV_WS_URL])
        .private_key(environ[ENV_PRIVATE_KEY])
        .build()
    )


def load_signer(config: BenchConfig) -> Keypair:
    """Decode the base58 keypair held in ``config.private_key``."""
    try:
        raw = base58.b58decode(config.private_key.strip())
        return Keypair.from_bytes(raw)
    except ValueError as e:
        raise TxRaceError.config(f"{ENV_PRIVATE_KEY} is not a valid base58 keypair") from e

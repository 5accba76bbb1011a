"""
txrace — WebSocket Slot Stream

Subscribes to slot notifications on the cluster's pubsub endpoint so the
TPU client can follow the current leader. Uses aiohttp WebSocket client.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from .errors import TxRaceError

logger = logging.getLogger("txrace.ws")

# Callback type alias
Callback = Callable[..., Any]


class SlotStream:
    """``slotSubscribe`` stream with auto-reconnect.

    Emits ``slot`` (int) for every notification, plus ``connected`` and
    ``disconnected``.
    """

    def __init__(self, url: str, timeout_ms: int = 10_000) -> None:
        self._url = url
        self._timeout_ms = timeout_ms
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._connected = False
        self._should_reconnect = True
        self._reconnect_attempts = 0
        self._max_reconnect_attempts = 10
        self._subscription_id: Optional[int] = None
        self._listeners: Dict[str, List[Callback]] = {}
        self._recv_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None

    def on(self, event: str, callback: Callback) -> None:
        """Register an event listener."""
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

    async def connect(self) -> int:
        """Connect and subscribe; returns the subscription id."""
        self._should_reconnect = True
        self._session = aiohttp.ClientSession()

        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(self._url), timeout=self._timeout_ms / 1000
            )
        except Exception as e:
            await self._session.close()
            raise TxRaceError.connection(
                f"WebSocket connection to {self._url} failed: {e}"
            ) from e

        await self._ws.send_json(
            {"jsonrpc": "2.0", "id": 1, "method": "slotSubscribe", "params": []}
        )

        # Wait for the subscription ack
        try:
            msg = await asyncio.wait_for(
                self._ws.receive(), timeout=self._timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            await self._cleanup()
            raise TxRaceError.timeout(self._timeout_ms)

        if msg.type != aiohttp.WSMsgType.TEXT:
            await self._cleanup()
            raise TxRaceError.connection("Unexpected WebSocket message type")

        data = json.loads(msg.data)
        if "error" in data or not isinstance(data.get("result"), int):
            await self._cleanup()
            raise TxRaceError.connection(
                f"slotSubscribe rejected: {data.get('error') or data}"
            )

        self._subscription_id = data["result"]
        self._connected = True
        self._reconnect_attempts = 0

        self._recv_task = asyncio.create_task(self._receive_loop())
        self._emit("connected", self._subscription_id)
        logger.debug("Subscribed to slots on %s (id %d)", self._url, self._subscription_id)
        return self._subscription_id

    async def disconnect(self) -> None:
        """Disconnect from the WebSocket server."""
        self._should_reconnect = False
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        await self._cleanup()

    def is_connected(self) -> bool:
        return self._connected

    # =========================================================================
    # Internal
    # =========================================================================

    async def _receive_loop(self) -> None:
        if not self._ws:
            return

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                        self._handle_message(data)
                    except json.JSONDecodeError:
                        logger.warning("Received malformed JSON message from WebSocket")
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSED,
                    aiohttp.WSMsgType.ERROR,
                ):
                    break
        except Exception:
            logger.exception("WebSocket receive error")
        finally:
            self._connected = False
            self._emit("disconnected")

            if self._should_reconnect:
                self._reconnect_task = asyncio.create_task(self._schedule_reconnect())

    def _handle_message(self, msg: Dict[str, Any]) -> None:
        if msg.get("method") != "slotNotification":
            return
        result = (msg.get("params") or {}).get("result") or {}
        slot = result.get("slot")
        if isinstance(slot, int):
            self._emit("slot", slot)

    async def _schedule_reconnect(self) -> None:
        while self._should_reconnect and self._reconnect_attempts < self._max_reconnect_attempts:
            delay = min(2**self._reconnect_attempts, 30)
            self._reconnect_attempts += 1

            await asyncio.sleep(delay)
            await self._close_transport()
            try:
                await self.connect()
                return
            except Exception as e:
                logger.debug("Reconnect attempt %d failed: %s", self._reconnect_attempts, e)

        if self._should_reconnect:
            logger.warning(
                "Slot stream to %s lost after %d reconnect attempts",
                self._url,
                self._reconnect_attempts,
            )

    async def _close_transport(self) -> None:
        if self._ws and not self._ws.closed:
            await self._ws.close()

        if self._session and not self._session.closed:
            await self._session.close()

    async def _cleanup(self) -> None:
        self._connected = False

        if self._recv_task and not self._recv_task.done():
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass

        await self._close_transport()

"""
Signal K WebSocket stream client.

Subscribes to the own vessel's deltas and hands each parsed delta to a
callback. Reconnects with a fixed delay until stop() is called.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from n2kbridge.config import SignalKConfig

log = logging.getLogger(__name__)


class SignalKClient:
    def __init__(self, cfg: SignalKConfig, on_delta: Callable[[Dict[str, Any]], Any],
                 on_connect: Optional[Callable[[], Awaitable[None]]] = None):
        self.cfg = cfg
        self.on_delta = on_delta
        self.on_connect = on_connect
        self._stop = asyncio.Event()
        self._connect_task: Optional[asyncio.Task] = None

    def subscription(self) -> Dict[str, Any]:
        return {
            "context": "vessels.self",
            "subscribe": [{
                "path": self.cfg.subscribe_path,
                "period": 1000,
                "format": "delta",
                "policy": "instant",
                "minPeriod": 200,
            }],
        }

    def _start_connect_hook(self) -> None:
        """Run on_connect in the background so the receive loop keeps going.

        A hook still running from an earlier connection is cancelled first.
        """
        if self.on_connect is None:
            return
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = asyncio.create_task(self.on_connect())

    def handle_message(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError as e:
            log.error(f"Error parsing Signal K message: {e}")
            return
        if not isinstance(message, dict):
            return
        if "updates" in message:
            self.on_delta(message)
        elif "self" in message:
            log.info(f"Signal K server: {message.get('name', 'Unknown')} v{message.get('version', 'Unknown')}")
            log.info(f"Vessel: {message['self']}")

    async def _session(self, session: aiohttp.ClientSession) -> None:
        async with session.ws_connect(self.cfg.stream_url, heartbeat=30) as ws:
            log.info(f"Connected to Signal K stream {self.cfg.stream_url}")
            await ws.send_json(self.subscription())
            log.info(f"Subscribed to Signal K path: vessels.self/{self.cfg.subscribe_path}")
            self._start_connect_hook()
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    log.error(f"Signal K WebSocket error: {ws.exception()}")
                    break
                if self._stop.is_set():
                    break
        log.info("Signal K WebSocket connection closed")

    async def run(self) -> None:
        async with aiohttp.ClientSession() as session:
            while not self._stop.is_set():
                try:
                    await self._session(session)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    log.error(f"Signal K connection error: {e}")
                if self._stop.is_set():
                    break
                log.info(f"Reconnecting to Signal K in {self.cfg.reconnect_secs:g}s...")
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.cfg.reconnect_secs)
                except asyncio.TimeoutError:
                    pass
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()

    def stop(self) -> None:
        self._stop.set()

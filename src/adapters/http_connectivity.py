"""HTTP connectivity monitor — implements ConnectivityPort.

Polls the sync server and reports reachability transitions. Any HTTP
response (whatever its status) means the network path is up; a transport
error or timeout means it is down. Subscribers hear about changes only,
plus the very first probe.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

from src.ports.connectivity_port import ConnectivityCallback

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 5


class HttpConnectivityMonitor:
    """Polling implementation of ConnectivityPort."""

    def __init__(
        self,
        probe_url: str,
        interval_seconds: float = 30.0,
        timeout: float = _TIMEOUT_SECONDS,
    ) -> None:
        self._probe_url = probe_url
        self._interval = interval_seconds
        self._timeout = timeout
        self._subscribers: list[ConnectivityCallback] = []
        self._connected: bool | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool | None:
        """Last observed state, or None before the first probe."""
        return self._connected

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def probe(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                await client.head(self._probe_url)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe to %s failed: %s", self._probe_url, exc)
            return False
        return True

    async def check(self) -> bool:
        """Probe once and notify subscribers if the state changed."""
        connected = await self.probe()
        if connected != self._connected:
            self._connected = connected
            logger.info("Connectivity changed: %s", "online" if connected else "offline")
            for callback in list(self._subscribers):
                try:
                    await callback(connected)
                except Exception as exc:
                    logger.error("Connectivity subscriber failed: %s", exc)
        return connected

    async def run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

"""Connectivity port — source of network reachability changes."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

ConnectivityCallback = Callable[[bool], Awaitable[None]]


class ConnectivityPort(Protocol):
    """Notifies subscribers with `is_connected` whenever reachability changes."""

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register `callback`; the returned callable unsubscribes it."""
        ...

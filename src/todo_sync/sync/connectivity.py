"""Connectivity monitor: tracks online/offline state and announces transitions.

The monitor holds a single boolean. Callers flip it directly (an OS network
event, a failed request) or let the optional probe loop poll the server's
health endpoint. Registered callbacks run only on an actual transition.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union


logger = logging.getLogger(__name__)


ConnectivityCallback = Callable[[bool], Union[None, Awaitable[None]]]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Online/offline state with transition callbacks and an optional probe."""

    def __init__(self, initially_online: bool = True, probe: Optional[Probe] = None,
                 probe_interval: float = 15.0):
        """Initialize the monitor.

        Args:
            initially_online: Starting state
            probe: Coroutine function returning True when the server is reachable
            probe_interval: Seconds between probes once started
        """
        self._online = initially_online
        self._probe = probe
        self.probe_interval = probe_interval
        self._callbacks: List[ConnectivityCallback] = []
        self._probe_task: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(__name__)

    @property
    def is_online(self) -> bool:
        return self._online

    def on_change(self, callback: ConnectivityCallback):
        """Register a callback fired with the new state on each transition."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: ConnectivityCallback):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def set_online(self, online: bool) -> bool:
        """Record the current connectivity.

        Returns:
            True if this call changed the state
        """
        if online == self._online:
            return False

        self._online = online
        self.logger.info(f"Connectivity changed: {'online' if online else 'offline'}")

        for callback in list(self._callbacks):
            try:
                result = callback(online)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(f"Connectivity callback {callback!r} failed: {e}")
        return True

    async def check(self) -> bool:
        """Run the probe once and record its answer."""
        if self._probe is None:
            return self._online

        try:
            reachable = bool(await self._probe())
        except Exception as e:
            self.logger.debug(f"Connectivity probe failed: {e}")
            reachable = False

        await self.set_online(reachable)
        return reachable

    async def _probe_loop(self):
        while True:
            await self.check()
            await asyncio.sleep(self.probe_interval)

    def start(self):
        """Start periodic probing on the running event loop."""
        if self._probe is None or self._probe_task is not None:
            return
        self._probe_task = asyncio.ensure_future(self._probe_loop())
        self.logger.debug(f"Connectivity probe started (interval={self.probe_interval}s)")

    async def stop(self):
        """Stop periodic probing."""
        if self._probe_task is None:
            return
        self._probe_task.cancel()
        try:
            await self._probe_task
        except asyncio.CancelledError:
            pass
        self._probe_task = None

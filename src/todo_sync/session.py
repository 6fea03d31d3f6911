"""Per-session wiring of the offline sync subsystem.

A ``SyncContext`` is built once for the signed-in owner and handed to
whatever needs the store, the synchronizer or the state sink. Nothing here
is process-global.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import AppConfig
from .state import TaskStateStore
from .storage import OperationQueue, StorageBackend, TaskStore, open_backend
from .sync import ConnectivityMonitor, HttpTaskGateway, RemoteTaskGateway, Synchronizer


logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Everything one client session uses, built from an ``AppConfig``."""

    config: AppConfig
    backend: StorageBackend
    store: TaskStore
    queue: OperationQueue
    gateway: RemoteTaskGateway
    monitor: ConnectivityMonitor
    state: TaskStateStore
    synchronizer: Synchronizer

    @classmethod
    def open(cls, config: AppConfig, gateway: Optional[RemoteTaskGateway] = None,
             backend: Optional[StorageBackend] = None,
             initially_online: bool = True,
             push_on_write: Optional[bool] = None) -> "SyncContext":
        """Build the context.

        Args:
            config: Client configuration
            gateway: Gateway override; defaults to the HTTP gateway from config
            backend: Storage backend override; defaults to negotiating one from config
            initially_online: Connectivity assumed before the first probe
            push_on_write: Override of the configured push-on-write setting

        Returns:
            A wired but not yet started context
        """
        if backend is None:
            backend = open_backend(config.storage.backend, config.storage.db_path)

        if gateway is None:
            gateway = HttpTaskGateway(
                config.gateway.api_url,
                token=config.gateway.token,
                timeout=config.gateway.timeout_seconds,
                page_size=config.gateway.page_size,
            )

        store = TaskStore(backend)
        queue = OperationQueue(backend)
        monitor = ConnectivityMonitor(
            initially_online=initially_online,
            probe=gateway.ping,
            probe_interval=config.sync.probe_interval_seconds,
        )
        state = TaskStateStore()
        synchronizer = Synchronizer(
            config.owner_id, store, queue, gateway,
            sink=state,
            monitor=monitor,
            interval=config.sync.interval_seconds,
            request_timeout=config.gateway.timeout_seconds,
            max_attempts=config.sync.max_attempts,
            backoff_max=config.sync.backoff_max_seconds,
            push_on_write=(config.sync.push_on_write if push_on_write is None
                           else push_on_write),
        )

        logger.debug(f"Opened sync session for {config.owner_id} on {backend.name} storage")
        return cls(config, backend, store, queue, gateway, monitor, state, synchronizer)

    def start(self):
        """Start connectivity probing and periodic sync on the running loop."""
        self.monitor.start()
        self.synchronizer.start()

    async def close(self):
        """Stop background work and release resources."""
        await self.synchronizer.stop()
        await self.monitor.stop()
        await self.gateway.close()
        self.backend.close()

    async def __aenter__(self) -> "SyncContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

"""Synchronization between the offline store and the task server."""

from .connectivity import ConnectivityMonitor
from .gateway import HttpTaskGateway, RemoteTaskGateway
from .synchronizer import LAST_SYNC_KEY, Synchronizer

__all__ = [
    "ConnectivityMonitor",
    "HttpTaskGateway",
    "RemoteTaskGateway",
    "Synchronizer",
    "LAST_SYNC_KEY",
]

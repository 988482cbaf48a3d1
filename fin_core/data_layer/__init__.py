# =============================================================================
# fin_core/data_layer/__init__.py
# Offline-capable data layer for the finance backend
# =============================================================================
"""
Data layer package.

Components:
- APIClient: HTTP access to the primary backend and the local API
- CacheManager: TTL cache in front of every read
- SyncManager: durable queue of mutations replayed when online
- LocalStore / LocalStorage: SQLite-backed local persistence
- DataLayer: the facade tying them together
"""

from .types import (
    APIResponse,
    CacheEntry,
    CacheStats,
    CRUDOperation,
    PendingOperation,
    Resource,
    SyncStatus,
)
from .resources import REGISTRY, ResourceSpec, ResourceType, get_resource_spec
from .config import DataLayerConfig
from .storage import LocalStorage
from .local_store import LocalStore
from .connectivity import (
    ConnectivityObserver,
    StaticConnectivity,
    ConnectionMonitor,
    ConnectionStatus,
)
from .api_client import APIClient
from .cache_manager import CacheManager
from .sync_manager import SyncManager
from .data_layer import DataLayer, get_data_layer, reset_data_layer

__all__ = [
    # Types
    "APIResponse",
    "CacheEntry",
    "CacheStats",
    "CRUDOperation",
    "PendingOperation",
    "Resource",
    "SyncStatus",
    # Resources
    "REGISTRY",
    "ResourceSpec",
    "ResourceType",
    "get_resource_spec",
    # Configuration
    "DataLayerConfig",
    # Persistence
    "LocalStorage",
    "LocalStore",
    # Connectivity
    "ConnectivityObserver",
    "StaticConnectivity",
    "ConnectionMonitor",
    "ConnectionStatus",
    # Components
    "APIClient",
    "CacheManager",
    "SyncManager",
    "DataLayer",
    "get_data_layer",
    "reset_data_layer",
]

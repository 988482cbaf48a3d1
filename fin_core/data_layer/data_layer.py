# =============================================================================
# fin_core/data_layer/data_layer.py
# DataLayer - Single API for Online/Offline Resource Operations
# =============================================================================
"""
DataLayer - the entry point UI code uses for every finance resource.

This facade automatically handles:
- Online mode: primary backend, then the secondary local API
- Offline mode: cache and local persistence, with mutations queued for replay
- Network-class failures on create degrade to an offline write
- Automatic replay when connectivity returns

Usage:
------
from fin_core.data_layer import get_data_layer

data_layer = get_data_layer()

account = data_layer.create("accounts", {"name": "Checking", "balance": 100})
accounts = data_layer.read("accounts")
data_layer.update("accounts", account["id"], {"balance": 150})
data_layer.delete("accounts", account["id"])

print(data_layer.get_sync_status())
"""

from __future__ import annotations
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode

from fin_core.errors import (
    APIError,
    ConfigurationError,
    ErrorContext,
    OfflineUnavailableError,
    OfflineUpdateError,
    UNKNOWN_ERROR,
    handle_error,
    is_network_error,
    safe_execute,
)
from fin_core.logging import LogContext, get_logger
from fin_core.data_layer.api_client import APIClient
from fin_core.data_layer.cache_manager import CacheManager
from fin_core.data_layer.config import DataLayerConfig
from fin_core.data_layer.connectivity import ConnectionMonitor, ConnectivityObserver
from fin_core.data_layer.local_store import LocalStore
from fin_core.data_layer.resources import ResourceSpec, ResourceType, get_resource_spec
from fin_core.data_layer.storage import LocalStorage
from fin_core.data_layer.sync_manager import SyncCallback, SyncManager
from fin_core.data_layer.types import (
    APIResponse,
    CacheStats,
    CRUDOperation,
    PendingOperation,
    Resource,
    SyncStatus,
    utc_now_iso,
)

logger = get_logger(__name__)

ResourceArg = Union[ResourceType, str]
QueryParams = Dict[str, Any]


def _has_id(item: Any, resource_id: str) -> bool:
    return isinstance(item, dict) and item.get("id") == resource_id


class DataLayer:
    """
    Unified CRUD over the finance backend with offline fallback.

    Components are built from the config unless passed in explicitly, which
    is how tests inject fakes.
    """

    def __init__(
        self,
        config: Optional[DataLayerConfig] = None,
        *,
        api_client: Optional[APIClient] = None,
        fallback_client: Optional[APIClient] = None,
        cache: Optional[CacheManager] = None,
        storage: Optional[LocalStorage] = None,
        connectivity: Optional[ConnectivityObserver] = None,
        start_background: bool = True,
    ):
        """
        Args:
            config: Settings; defaults to DataLayerConfig()
            api_client: Client for the primary backend
            fallback_client: Client for the secondary local API
            cache: Cache for read results and freshly written records
            storage: Durable store for local collections and the sync queue
            connectivity: Online/offline source; defaults to a ConnectionMonitor
                probing the primary backend's health endpoint
            start_background: Whether to start sweep, sync and monitor threads
        """
        self.config = config or DataLayerConfig()

        self.api_client = api_client or APIClient(
            self.config.api_base_url,
            timeout=self.config.request_timeout,
        )
        self.fallback_client = fallback_client or APIClient(
            self.config.fallback_base_url,
            timeout=self.config.request_timeout,
        )
        self.cache = cache or CacheManager(
            default_ttl=self.config.default_ttl,
            max_entries=self.config.cache_max_entries,
            cleanup_interval=self.config.cache_cleanup_interval,
            start_cleanup=start_background,
        )

        self._owns_storage = storage is None
        self.storage = storage or LocalStorage(self.config.storage_path)
        self.local_store = LocalStore(self.storage)

        self._monitor: Optional[ConnectionMonitor] = None
        if connectivity is None:
            self._monitor = ConnectionMonitor(self.api_client.health_check)
            if start_background:
                self._monitor.start_monitoring()
            connectivity = self._monitor
        self.connectivity = connectivity

        self.sync_manager = SyncManager(
            self.api_client,
            self.storage,
            connectivity,
            sync_interval=self.config.sync_interval,
            start=start_background,
        )

        self._setup_error_handling()

        if self.config.cache_enabled:
            restored = safe_execute(
                self.cache.load_snapshot,
                self.storage,
                default=0,
                context="Restoring cache snapshot",
            )
            if restored:
                logger.debug(f"Restored {restored} cache entries from snapshot")

        logger.info(f"DataLayer initialized. Online: {self.is_online()}")

    def _setup_error_handling(self) -> None:
        self.api_client.on_error(self._on_api_error)

    @staticmethod
    def _on_api_error(error: APIError) -> None:
        # Network failures are expected offline; only log the rest
        if not error.is_network_error:
            logger.warning(f"API client error: {error}")

    # =========================================================================
    # CACHE KEYS
    # =========================================================================

    @staticmethod
    def _cache_key(
        resource: str,
        resource_id: Optional[str] = None,
        params: Optional[QueryParams] = None,
    ) -> str:
        key = resource
        if resource_id is not None:
            key += f":{resource_id}"
        query = DataLayer._query_string(params)
        if query:
            key += f"?{query}"
        return key

    @staticmethod
    def _query_string(params: Optional[QueryParams]) -> str:
        if not params:
            return ""
        items = sorted((k, v) for k, v in params.items() if v is not None)
        return urlencode(items, doseq=True)

    @staticmethod
    def _clean_params(params: Optional[QueryParams]) -> Optional[QueryParams]:
        if not params:
            return None
        return {k: v for k, v in params.items() if v is not None}

    def _invalidate_lists(self, resource: str) -> int:
        """Drop the plain and paged list caches, keeping single-record keys."""
        return self.cache.invalidate_pattern(rf"^{re.escape(resource)}(\?|$)")

    def _invalidate_record(self, resource: str, resource_id: str) -> int:
        return self.cache.invalidate_pattern(
            rf"^{re.escape(resource)}:{re.escape(str(resource_id))}(\?|$)"
        )

    # Offline mutations edit cached lists in place instead of dropping them;
    # the cache may hold the only copy of backend data.

    def _add_to_cached_list(self, spec: ResourceSpec, record: Resource) -> int:
        def add(items: Any) -> Any:
            if not isinstance(items, list):
                return items
            return [record, *items] if spec.prepend else [*items, record]

        # Filtered pages are left alone; the record may not belong in them
        return self.cache.update_pattern(rf"^{re.escape(spec.name)}$", add)

    def _merge_into_cached_lists(self, spec: ResourceSpec, resource_id: str, record: Resource) -> int:
        def merge(items: Any) -> Any:
            if not isinstance(items, list):
                return items
            return [{**item, **record} if _has_id(item, resource_id) else item for item in items]

        return self.cache.update_pattern(rf"^{re.escape(spec.name)}(\?|$)", merge)

    def _remove_from_cached_lists(self, spec: ResourceSpec, resource_id: str) -> int:
        def remove(items: Any) -> Any:
            if not isinstance(items, list):
                return items
            return [item for item in items if not _has_id(item, resource_id)]

        return self.cache.update_pattern(rf"^{re.escape(spec.name)}(\?|$)", remove)

    def _find_cached(self, spec: ResourceSpec, resource_id: str) -> Optional[Resource]:
        """Cached copy of one record: its own entry, else the cached list."""
        cached = self.cache.get(self._cache_key(spec.name, resource_id))
        if cached is not None:
            return cached
        for item in self.cache.get(self._cache_key(spec.name)) or []:
            if _has_id(item, resource_id):
                return item
        return None

    # =========================================================================
    # CREATE
    # =========================================================================

    def create(self, resource: ResourceArg, data: Dict[str, Any]) -> Resource:
        """
        Create a resource.

        While online the primary backend is tried, then the secondary local
        API. If both fail with network-class errors the record is written
        locally, marked ``_offline`` and queued; this path never raises.
        Offline, the record is written locally with a temporary id and queued.

        Raises:
            APIError: the primary backend rejected the record
            OfflineUnavailableError: offline and offline mode is disabled
        """
        spec = get_resource_spec(resource)
        payload = dict(data)

        if not self.is_online():
            if not self.config.offline_enabled:
                raise OfflineUnavailableError(
                    "Cannot create resources while offline",
                    resource=spec.name,
                )
            return self._create_locally(spec, payload, id_prefix="temp")

        try:
            response = self.api_client.post(f"/{spec.name}", payload)
            self._require_success(response, f"Failed to create {spec.name}")
            created = spec.unwrap_item(response.data) or response.data
            return self._after_create(spec, created)
        except APIError as e:
            primary_error = e
            logger.debug(f"Backend unavailable for {spec.name}, trying local API: {e}")

        try:
            created = self._fallback_create(spec, payload)
            logger.info(f"Created {spec.name}/{created.get('id')} through local API")
            return self._after_create(spec, created)
        except APIError as e:
            fallback_error = e
            logger.warning(f"Local API also failed for {spec.name}: {e}")

        if (
            self.config.offline_enabled
            and primary_error.is_network_error
            and fallback_error.is_network_error
        ):
            logger.info(f"Network error creating {spec.name}, saving offline")
            return self._create_locally(spec, payload, id_prefix="offline")

        if primary_error.retryable:
            self._queue(spec, CRUDOperation.CREATE, payload)
        handle_error(primary_error, context=f"Creating {spec.name}")
        raise primary_error

    def _fallback_create(self, spec: ResourceSpec, payload: Dict[str, Any]) -> Resource:
        response = self.fallback_client.post(f"/{spec.name}", payload)
        self._require_success(response, f"Failed to create {spec.name}")
        created = spec.unwrap_item(response.data)
        if created is None:
            raise APIError("Invalid response from local API", code=UNKNOWN_ERROR)
        return created

    def _after_create(self, spec: ResourceSpec, created: Resource) -> Resource:
        if isinstance(created, dict) and created.get("id") is not None:
            self.cache.set(self._cache_key(spec.name, created["id"]), created)
        self._invalidate_lists(spec.name)
        return created

    def _create_locally(
        self,
        spec: ResourceSpec,
        payload: Dict[str, Any],
        id_prefix: str,
    ) -> Resource:
        now = utc_now_iso()
        record = {
            **payload,
            "id": f"{id_prefix}-{uuid.uuid4().hex}",
            "createdAt": now,
            "updatedAt": now,
            "_offline": True,
        }

        with ErrorContext(f"Saving {spec.name} locally"):
            self.local_store.append(spec.resource, record)

        self.cache.set(self._cache_key(spec.name, record["id"]), record)
        self._add_to_cached_list(spec, record)
        self._queue(spec, CRUDOperation.CREATE, payload)
        return record

    # =========================================================================
    # READ
    # =========================================================================

    def read(
        self,
        resource: ResourceArg,
        resource_id: Optional[str] = None,
        params: Optional[QueryParams] = None,
        use_cache: bool = True,
    ) -> Any:
        """
        Read a collection, or one record when resource_id is given.

        Lookup order: cache, primary backend (with retry), then on failure
        the cache again and local persistence.

        Args:
            resource: Resource kind
            resource_id: Record id, or None for the collection
            params: Query parameters sent with the list request
            use_cache: False skips the initial cache probe (the cache is
                still used as a fallback)

        Raises:
            OfflineUnavailableError: offline with nothing cached or stored
            APIError: the online read failed and no fallback had the data
        """
        spec = get_resource_spec(resource)
        cache_key = self._cache_key(spec.name, resource_id, params)

        if use_cache and self.config.cache_enabled:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        if self.is_online():
            try:
                return self._read_remote(spec, cache_key, resource_id, params)
            except APIError as e:
                error: Exception = e
                logger.debug(f"Read of {cache_key} failed, using fallbacks: {e}")
        else:
            error = OfflineUnavailableError(resource=spec.name, resource_id=resource_id)

        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        local = self._read_local(spec, cache_key, resource_id)
        if local is not None:
            return local

        raise error

    def _read_remote(
        self,
        spec: ResourceSpec,
        cache_key: str,
        resource_id: Optional[str],
        params: Optional[QueryParams],
    ) -> Any:
        endpoint = f"/{spec.name}/{resource_id}" if resource_id is not None else f"/{spec.name}"

        def fetch() -> APIResponse:
            response = self.api_client.get(endpoint, params=self._clean_params(params))
            self._require_success(response, f"Failed to read {spec.name}")
            return response

        response = self.api_client.retry(
            fetch,
            max_retries=self.config.max_retries,
            delay=self.config.retry_delay,
            # A dropped connection goes straight to the cache fallback
            should_retry=lambda e: not is_network_error(e),
        )

        if resource_id is None:
            data = spec.unwrap_collection(response.data)
        else:
            data = spec.unwrap_item(response.data) or response.data

        if self.config.cache_enabled:
            self.cache.set(cache_key, data, self.config.default_ttl)
        return data

    def _read_local(
        self,
        spec: ResourceSpec,
        cache_key: str,
        resource_id: Optional[str],
    ) -> Any:
        items = self.local_store.list(spec.resource)
        if items is None:
            return None

        logger.info(f"Loaded {spec.name} from local storage")

        if resource_id is not None:
            return next(
                (item for item in items if _has_id(item, resource_id)),
                None,
            )

        if self.config.cache_enabled:
            self.cache.set(cache_key, items, self.config.default_ttl)
        return items

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update(
        self,
        resource: ResourceArg,
        resource_id: str,
        data: Dict[str, Any],
    ) -> Resource:
        """
        Patch a resource.

        While online the primary backend is tried, then the secondary local
        API; if both fail the update is queued and an error is still raised.
        Offline, the patch is applied to the cached copy and queued.

        Raises:
            APIError: both online tiers failed (the update is queued)
            OfflineUpdateError: offline with no cached copy to patch
            OfflineUnavailableError: offline and offline mode is disabled
        """
        spec = get_resource_spec(resource)
        patch = dict(data)

        if not self.is_online():
            return self._update_offline(spec, resource_id, patch)

        path = f"/{spec.name}/{resource_id}"

        try:
            response = self.api_client.put(path, patch)
            self._require_success(response, f"Failed to update {spec.name}")
            updated = spec.unwrap_item(response.data) or response.data
            return self._after_update(spec, resource_id, updated)
        except APIError as e:
            primary_error = e
            logger.debug(f"Backend unavailable for update of {spec.name}, trying local API: {e}")

        try:
            response = self.fallback_client.put(path, patch)
            self._require_success(response, f"Failed to update {spec.name}")
            updated = spec.unwrap_item(response.data)
            if updated is None:
                raise APIError("Invalid response from local API", code=UNKNOWN_ERROR)
            return self._after_update(spec, resource_id, updated)
        except APIError as e:
            logger.error(
                f"Local API also failed for update of {spec.name}: "
                f"backend={primary_error.message!r} local={e.message!r}"
            )

        self._queue(spec, CRUDOperation.UPDATE, {"id": resource_id, **patch})
        raise APIError(
            f"Failed to update {spec.name}: {primary_error.message}",
            code=primary_error.code,
            status_code=primary_error.status_code,
            details={"resource": spec.name, "id": resource_id},
            retryable=primary_error.retryable,
        ) from primary_error

    def _after_update(self, spec: ResourceSpec, resource_id: str, updated: Resource) -> Resource:
        self.cache.set(self._cache_key(spec.name, resource_id), updated)
        self._invalidate_lists(spec.name)
        return updated

    def _update_offline(
        self,
        spec: ResourceSpec,
        resource_id: str,
        patch: Dict[str, Any],
    ) -> Resource:
        if not self.config.offline_enabled:
            raise OfflineUnavailableError(
                "Cannot update resources while offline",
                resource=spec.name,
                resource_id=resource_id,
            )

        cached = self._find_cached(spec, resource_id)
        if cached is None:
            raise OfflineUpdateError(resource=spec.name, resource_id=resource_id)

        updated = {**cached, **patch, "updatedAt": utc_now_iso()}
        self.cache.set(self._cache_key(spec.name, resource_id), updated)
        self._merge_into_cached_lists(spec, resource_id, updated)

        with ErrorContext(f"Updating local {spec.name}/{resource_id}"):
            self.local_store.update(spec.resource, resource_id, patch)

        self._queue(spec, CRUDOperation.UPDATE, {"id": resource_id, **patch})
        return updated

    # =========================================================================
    # DELETE
    # =========================================================================

    def delete(self, resource: ResourceArg, resource_id: str) -> None:
        """
        Delete a resource.

        Online failures are queued for retry (while still online) and
        re-raised. Offline, the cached copy is dropped at once and the delete
        is queued.

        Raises:
            APIError: the online delete failed
            OfflineUnavailableError: offline and offline mode is disabled
        """
        spec = get_resource_spec(resource)

        if not self.is_online():
            if not self.config.offline_enabled:
                raise OfflineUnavailableError(
                    "Cannot delete resources while offline",
                    resource=spec.name,
                    resource_id=resource_id,
                )
            self._forget(spec, resource_id, reached_server=False)
            self._queue(spec, CRUDOperation.DELETE, {"id": resource_id})
            return

        try:
            response = self.api_client.delete(f"/{spec.name}/{resource_id}")
            self._require_success(response, f"Failed to delete {spec.name}")
        except APIError:
            if self.is_online():
                self._queue(spec, CRUDOperation.DELETE, {"id": resource_id})
            raise

        self._forget(spec, resource_id, reached_server=True)

    def _forget(self, spec: ResourceSpec, resource_id: str, reached_server: bool) -> None:
        self._invalidate_record(spec.name, resource_id)
        if reached_server:
            self._invalidate_lists(spec.name)
        else:
            self._remove_from_cached_lists(spec, resource_id)
        with ErrorContext(f"Deleting local {spec.name}/{resource_id}"):
            self.local_store.delete(spec.resource, resource_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _require_success(response: APIResponse, message: str) -> None:
        if not response.success:
            raise APIError(response.message or message, code=UNKNOWN_ERROR)

    def _queue(self, spec: ResourceSpec, operation: CRUDOperation, data: Dict[str, Any]) -> str:
        return self.sync_manager.queue_operation(
            spec.resource,
            operation,
            data,
            max_retries=self.config.max_retries,
        )

    # =========================================================================
    # CACHE MANAGEMENT
    # =========================================================================

    def invalidate_cache(self, resource: ResourceArg, resource_id: Optional[str] = None) -> int:
        """
        Drop cached data for one record, or for everything under a resource.

        Returns:
            Number of entries removed
        """
        spec = get_resource_spec(resource)
        if resource_id is not None:
            return self._invalidate_record(spec.name, resource_id)
        return self.cache.invalidate_pattern(rf"^{re.escape(spec.name)}(:|\?|$)")

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    # =========================================================================
    # SYNC OPERATIONS
    # =========================================================================

    def sync_pending_operations(self) -> bool:
        """Run a replay pass unless one is already running. Returns True if it ran."""
        return self.sync_manager.process_queue()

    def force_sync_all(self) -> None:
        """
        Replay the whole queue, waiting for any pass in progress.

        Raises:
            SyncError: when offline
        """
        pending = self.get_sync_status().pending_operations
        with LogContext(logger, "Replaying pending operations", pending=pending):
            self.sync_manager.force_sync_all()

    def on_sync_complete(self, callback: SyncCallback) -> None:
        self.sync_manager.on_sync_complete(callback)

    # =========================================================================
    # STATUS
    # =========================================================================

    def is_online(self) -> bool:
        return self.sync_manager.is_online()

    def get_sync_status(self) -> SyncStatus:
        return self.sync_manager.get_sync_status()

    def get_pending_operations(self) -> List[PendingOperation]:
        return self.sync_manager.get_pending_operations()

    def get_status(self) -> Dict[str, Any]:
        """
        Get comprehensive status information.

        Returns:
            Dict with status information for UI display
        """
        status = {
            "is_online": self.is_online(),
            "sync": self.sync_manager.get_status_display(),
            "cache": self.get_cache_stats().to_dict(),
            "pending_sync": self.get_sync_status().pending_operations,
        }
        if self._monitor is not None:
            status["connection"] = self._monitor.get_status_display()
        return status

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def update_config(self, **partial: Any) -> DataLayerConfig:
        """
        Live-patch configuration.

        Base URLs, request timeout, cache TTL and capacity, and the sweep and
        sync intervals are pushed into the running components. Intervals apply
        from the next timer tick. Retry settings and flags take effect on the
        next call. The storage path is fixed for the life of the instance.

        Raises:
            ConfigurationError: unknown key, invalid value, or a new storage_path
        """
        if "storage_path" in partial and Path(partial["storage_path"]) != Path(self.config.storage_path):
            raise ConfigurationError(
                "storage_path cannot be changed on a running DataLayer; build a new one",
                config_key="storage_path",
            )

        self.config = self.config.merged(partial)

        if "api_base_url" in partial:
            self.api_client.set_base_url(self.config.api_base_url)
        if "fallback_base_url" in partial:
            self.fallback_client.set_base_url(self.config.fallback_base_url)
        if "request_timeout" in partial:
            self.api_client.timeout = self.config.request_timeout
            self.fallback_client.timeout = self.config.request_timeout
        if "default_ttl" in partial:
            self.cache.default_ttl = self.config.default_ttl
        if "cache_max_entries" in partial:
            self.cache.resize(self.config.cache_max_entries)
        if "cache_cleanup_interval" in partial:
            self.cache.cleanup_interval = self.config.cache_cleanup_interval
        if "sync_interval" in partial:
            self.sync_manager.sync_interval = self.config.sync_interval
        if "cache_enabled" in partial and not self.config.cache_enabled:
            self.cache.clear()

        logger.info(f"DataLayer config updated: {', '.join(sorted(partial))}")
        return self.config

    def set_auth_token(self, token: str) -> None:
        self.api_client.set_auth_token(token)
        self.fallback_client.set_auth_token(token)

    def clear_auth_token(self) -> None:
        self.api_client.clear_auth_token()
        self.fallback_client.clear_auth_token()

    # =========================================================================
    # CLEANUP
    # =========================================================================

    def destroy(self) -> None:
        """Stop background work, clear the cache and release owned storage."""
        try:
            self.sync_manager.destroy()
            if self._monitor is not None:
                self._monitor.stop_monitoring()
            if self.config.cache_enabled:
                safe_execute(
                    self.cache.save_snapshot,
                    self.storage,
                    default=0,
                    context="Saving cache snapshot",
                )
            self.cache.destroy()
            if self._owns_storage:
                self.storage.close()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


# Singleton accessor
_data_layer: Optional[DataLayer] = None
_data_layer_lock = threading.Lock()


def get_data_layer(config: Optional[DataLayerConfig] = None) -> DataLayer:
    """
    Get the process-wide DataLayer, creating it on first use.

    The config is only used by the call that creates the instance; without
    one, settings are read from the environment.

    Usage:
        from fin_core.data_layer import get_data_layer

        data_layer = get_data_layer()
        accounts = data_layer.read("accounts")
    """
    global _data_layer
    if _data_layer is None:
        with _data_layer_lock:
            if _data_layer is None:
                _data_layer = DataLayer(config or DataLayerConfig.from_env())
    return _data_layer


def reset_data_layer() -> None:
    """Destroy the process-wide DataLayer so the next access builds a new one."""
    global _data_layer
    with _data_layer_lock:
        if _data_layer is not None:
            _data_layer.destroy()
            _data_layer = None

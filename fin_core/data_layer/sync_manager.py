# =============================================================================
# fin_core/data_layer/sync_manager.py
# Offline mutation queue and replay
# =============================================================================
"""
SyncManager - owns the queue of mutations the primary backend hasn't
confirmed yet, and replays it whenever the app is online.

Features:
- Durable queue (restored at construction, persisted on every change)
- FIFO replay passes guarded by a non-reentrant lock
- Per-operation retry budget; exhausted operations are dropped and reported
- Replay on reconnect, after enqueue, and on a periodic timer
- Sync-complete callbacks
"""

from __future__ import annotations
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from fin_core.errors import SyncError, notify_callbacks
from fin_core.data_layer.api_client import APIClient
from fin_core.data_layer.connectivity import ConnectivityObserver
from fin_core.data_layer.resources import ResourceType, resource_name
from fin_core.data_layer.storage import LocalStorage
from fin_core.data_layer.types import (
    CRUDOperation,
    PendingOperation,
    Resource,
    SyncStatus,
    parse_timestamp,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

SyncCallback = Callable[[SyncStatus], None]


class SyncManager:
    """
    Pending-operation queue with background replay.

    Usage:
        sync = SyncManager(api_client, storage, connectivity)
        sync.queue_operation("accounts", "create", {"name": "Checking"})
        sync.force_sync_all()
    """

    SYNC_INTERVAL = 30              # Seconds between periodic replay attempts
    MAX_RETRIES = 3                 # Default retry budget per operation
    STORAGE_KEY = "pending-operations"

    def __init__(
        self,
        api_client: APIClient,
        storage: LocalStorage,
        connectivity: ConnectivityObserver,
        sync_interval: float = SYNC_INTERVAL,
        storage_key: str = STORAGE_KEY,
        start: bool = True,
    ):
        """
        Args:
            api_client: Client for the primary backend
            storage: Durable store the queue is persisted to
            connectivity: Source of online/offline state and transitions
            sync_interval: Seconds between periodic replay attempts
            storage_key: Key the queue is persisted under
            start: Whether to start the periodic replay thread
        """
        self.api_client = api_client
        self.storage = storage
        self.connectivity = connectivity
        self.sync_interval = sync_interval
        self.storage_key = storage_key

        self._queue: List[PendingOperation] = []
        self._queue_lock = threading.RLock()
        self._sync_lock = threading.Lock()
        self._status = SyncStatus(is_online=connectivity.is_online())
        self._callbacks: List[SyncCallback] = []

        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._replay_thread: Optional[threading.Thread] = None

        self._restore_pending_operations()
        self._unsubscribe = connectivity.subscribe(self._on_connectivity_change)

        if start:
            self.start()

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _restore_pending_operations(self) -> None:
        try:
            stored = self.storage.get_json(self.storage_key, default=[]) or []
            self._queue = [PendingOperation.from_dict(raw) for raw in stored]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to restore pending operations, discarding stored queue: {e}")
            self._queue = []
            self.storage.remove_item(self.storage_key)

        self._update_status()
        if self._queue:
            logger.info(f"Restored {len(self._queue)} pending operations")

    def _persist_pending_operations(self) -> None:
        with self._queue_lock:
            payload = [op.to_dict() for op in self._queue]
        try:
            self.storage.set_json(self.storage_key, payload)
        except Exception as e:
            logger.error(f"Failed to persist pending operations: {e}")

    def _update_status(self) -> None:
        with self._queue_lock:
            self._status.pending_operations = len(self._queue)

    # =========================================================================
    # CONNECTIVITY
    # =========================================================================

    def _on_connectivity_change(self, online: bool) -> None:
        self._status.is_online = online
        if online:
            logger.info("Connection restored, replaying pending operations")
            self.process_queue()
        else:
            logger.info("Connection lost, queueing mutations locally")

    def is_online(self) -> bool:
        return self._status.is_online

    # =========================================================================
    # QUEUE MANAGEMENT
    # =========================================================================

    @staticmethod
    def _generate_operation_id() -> str:
        return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"

    def queue_operation(
        self,
        resource: Union[ResourceType, str],
        operation: Union[CRUDOperation, str],
        data: Any,
        max_retries: int = MAX_RETRIES,
    ) -> str:
        """
        Append a mutation to the queue and persist it.

        If online, a replay pass is started on a background thread; the
        caller is never blocked.

        Returns:
            The new operation id
        """
        pending = PendingOperation(
            id=self._generate_operation_id(),
            resource=resource_name(resource),
            operation=CRUDOperation(operation).value,
            data=data,
            max_retries=max_retries,
        )

        with self._queue_lock:
            self._queue.append(pending)
            self._update_status()
            self._persist_pending_operations()

        logger.debug(f"Queued {pending.operation} on {pending.resource} ({pending.id})")

        if self._status.is_online:
            self._schedule_replay()

        return pending.id

    def _schedule_replay(self) -> None:
        self._replay_thread = threading.Thread(
            target=self._background_replay,
            daemon=True,
            name="SyncReplay",
        )
        self._replay_thread.start()

    def _background_replay(self) -> None:
        try:
            self.process_queue()
        except Exception as e:
            logger.error(f"Background replay failed: {e}")

    def join_background(self, timeout: Optional[float] = None) -> None:
        """Wait for the most recent background replay to finish."""
        thread = self._replay_thread
        if thread is not None:
            thread.join(timeout=timeout)

    def get_pending_operations(self) -> List[PendingOperation]:
        """Copies of the queued operations, oldest first."""
        with self._queue_lock:
            return [PendingOperation.from_dict(op.to_dict()) for op in self._queue]

    def remove_operation(self, operation_id: str) -> bool:
        """Drop a queued operation before it is replayed."""
        with self._queue_lock:
            before = len(self._queue)
            self._queue = [op for op in self._queue if op.id != operation_id]
            removed = len(self._queue) != before
            self._update_status()
            self._persist_pending_operations()
        return removed

    def clear_queue(self) -> None:
        with self._queue_lock:
            self._queue = []
            self._update_status()
            self._persist_pending_operations()

    # =========================================================================
    # REPLAY
    # =========================================================================

    def process_queue(self, wait: bool = False) -> bool:
        """
        Replay every operation queued when the pass starts, in order.

        A call made while another pass is running returns immediately unless
        ``wait`` is True, in which case it runs a full pass once the other
        one finishes.

        Returns:
            True if a pass ran
        """
        if not self._status.is_online:
            return False

        if not self._sync_lock.acquire(blocking=wait):
            return False

        try:
            self._status.sync_in_progress = True
            self._status.errors = []

            with self._queue_lock:
                snapshot = list(self._queue)

            if snapshot:
                logger.info(f"Syncing {len(snapshot)} pending operations")

            finished = set()
            success_count = 0

            for op in snapshot:
                try:
                    self._execute_operation(op)
                    finished.add(op.id)
                    success_count += 1
                except Exception as e:
                    with self._queue_lock:
                        op.retry_count += 1
                        self._persist_pending_operations()

                    if op.exhausted:
                        self._status.errors.append(
                            f"Failed to sync {op.operation} on {op.resource}: "
                            f"operation failed after {op.max_retries} retries ({e})"
                        )
                        finished.add(op.id)
                        logger.warning(
                            f"Dropping {op.operation} on {op.resource} after "
                            f"{op.max_retries} attempts: {e}"
                        )
                    elif op.retry_count == 1:
                        logger.info(
                            f"Will retry {op.operation} on {op.resource} "
                            f"({op.retry_count}/{op.max_retries}): {e}"
                        )

            with self._queue_lock:
                self._queue = [op for op in self._queue if op.id not in finished]
                self._status.last_sync = utc_now_iso()
                self._update_status()
                self._persist_pending_operations()

            if snapshot:
                logger.info(
                    f"Sync complete: {success_count} synced, "
                    f"{len(self._status.errors)} dropped, "
                    f"{self._status.pending_operations} pending"
                )
        finally:
            self._status.sync_in_progress = False
            self._sync_lock.release()

        notify_callbacks(self._callbacks, self.get_sync_status(), label="sync callback")
        return True

    def _execute_operation(self, op: PendingOperation) -> None:
        """
        Send one queued mutation to the primary backend.

        Raises:
            APIError: transport or HTTP failure
            SyncError: the backend answered with success=False
        """
        operation = CRUDOperation(op.operation)
        path = f"/{op.resource}"

        if operation is CRUDOperation.CREATE:
            response = self.api_client.post(path, op.data)
        elif operation is CRUDOperation.UPDATE:
            response = self.api_client.put(f"{path}/{self._record_id(op)}", op.data)
        else:
            response = self.api_client.delete(f"{path}/{self._record_id(op)}")

        if not response.success:
            raise SyncError(
                response.message or f"Backend rejected {op.operation} on {op.resource}",
                operation_id=op.id,
            )

    @staticmethod
    def _record_id(op: PendingOperation) -> str:
        if not isinstance(op.data, dict) or op.data.get("id") is None:
            raise SyncError(f"Queued {op.operation} on {op.resource} has no record id", operation_id=op.id)
        return str(op.data["id"])

    def retry_operation(self, operation_id: str) -> None:
        """
        Replay a single queued operation now.

        Raises:
            SyncError: unknown id, offline, or the retry budget is exhausted
            APIError: the attempt failed but the operation stays queued
        """
        with self._queue_lock:
            op = next((o for o in self._queue if o.id == operation_id), None)
        if op is None:
            raise SyncError(f"Operation {operation_id} not found", operation_id=operation_id)

        if not self._status.is_online:
            raise SyncError("Cannot retry operation while offline", operation_id=operation_id)

        try:
            self._execute_operation(op)
        except Exception as e:
            with self._queue_lock:
                op.retry_count += 1
                self._persist_pending_operations()
            if op.exhausted:
                self.remove_operation(operation_id)
                raise SyncError(
                    f"Operation failed after {op.max_retries} retries",
                    operation_id=operation_id,
                ) from e
            raise

        self.remove_operation(operation_id)

    def force_sync_all(self) -> None:
        """
        Run a full replay pass and wait for it.

        Raises:
            SyncError: when offline
        """
        if not self._status.is_online:
            raise SyncError("Cannot sync while offline")
        self.process_queue(wait=True)

    # =========================================================================
    # CONFLICTS
    # =========================================================================

    @staticmethod
    def resolve_conflict(local: Resource, remote: Resource) -> Resource:
        """
        Last-write-wins on ``updatedAt``; the remote copy wins ties.
        """
        if parse_timestamp(local.get("updatedAt")) > parse_timestamp(remote.get("updatedAt")):
            return local
        return remote

    # =========================================================================
    # STATUS & LIFECYCLE
    # =========================================================================

    def get_sync_status(self) -> SyncStatus:
        """A copy of the current sync status."""
        self._update_status()
        return self._status.copy()

    def on_sync_complete(self, callback: SyncCallback) -> None:
        """Register a callback run with the status after every replay pass."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        status = self.get_sync_status()
        return {
            "is_online": status.is_online,
            "is_syncing": status.sync_in_progress,
            "last_sync": status.last_sync,
            "pending_count": status.pending_operations,
            "errors": status.errors,
        }

    def start(self) -> None:
        """Start the periodic replay thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncManager",
        )
        self._sync_thread.start()
        logger.debug("Periodic sync started")

    def _sync_loop(self) -> None:
        while not self._stop_sync.wait(timeout=self.sync_interval):
            if self._status.is_online and self._status.pending_operations > 0:
                try:
                    self.process_queue()
                except Exception as e:
                    logger.error(f"Sync error: {e}")

    def destroy(self) -> None:
        """Stop the periodic thread and stop listening for connectivity."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
        self._sync_thread = None
        self._unsubscribe()
        self.join_background(timeout=10)
        logger.debug("Sync manager stopped")

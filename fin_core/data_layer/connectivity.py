# =============================================================================
# fin_core/data_layer/connectivity.py
# Online/offline detection
# =============================================================================
"""
Connectivity observers - the data layer's view of online/offline state.

The sync manager only depends on the ConnectivityObserver interface, so tests
drive StaticConnectivity by hand while applications run a ConnectionMonitor
that probes the backend.
"""

from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import logging

from fin_core.errors import notify_callbacks

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class ConnectivityObserver(ABC):
    """Source of online/offline state and transition events."""

    def __init__(self):
        self._callbacks: List[ConnectivityCallback] = []
        self._callbacks_lock = threading.Lock()

    @abstractmethod
    def is_online(self) -> bool:
        """Current connectivity."""

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """
        Register a callback invoked with the new state on every transition.

        Returns:
            A function that removes the subscription
        """
        with self._callbacks_lock:
            if callback not in self._callbacks:
                self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._callbacks_lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def _notify(self, online: bool) -> None:
        with self._callbacks_lock:
            callbacks = list(self._callbacks)
        notify_callbacks(callbacks, online, label="connectivity callback")


class StaticConnectivity(ConnectivityObserver):
    """
    Manually driven connectivity.

    Usage:
        connectivity = StaticConnectivity(online=False)
        connectivity.set_online(True)   # subscribers run synchronously
    """

    def __init__(self, online: bool = True):
        super().__init__()
        self._online = online

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: online={online}")
        self._notify(online)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0


class ConnectionMonitor(ConnectivityObserver):
    """
    Probe-based connectivity with background monitoring.

    Usage:
        monitor = ConnectionMonitor(api_client.health_check)
        monitor.start_monitoring()
        if monitor.is_online():
            ...
    """

    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline

    def __init__(
        self,
        probe: Callable[[], bool],
        check_interval_online: float = CHECK_INTERVAL_ONLINE,
        check_interval_offline: float = CHECK_INTERVAL_OFFLINE,
    ):
        """
        Args:
            probe: Returns True when the backend is reachable; must not raise
            check_interval_online: Seconds between checks while online
            check_interval_offline: Seconds between checks while offline
        """
        super().__init__()
        self._probe = probe
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self._state = ConnectionState()
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_online(self) -> bool:
        return self._state.status == ConnectionStatus.ONLINE

    def check_now(self) -> ConnectionState:
        """
        Run the probe and update state, notifying subscribers on change.
        """
        old_status = self._state.status
        self._state.last_check = datetime.now()

        try:
            reachable = bool(self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            reachable = False

        if reachable:
            self._state.status = ConnectionStatus.ONLINE
            self._state.last_online = datetime.now()
            self._state.consecutive_failures = 0
        else:
            self._state.status = ConnectionStatus.OFFLINE
            self._state.consecutive_failures += 1

        if old_status != self._state.status:
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify(self.is_online())

        return self._state

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        was_online = self.is_online()
        self._state.status = ConnectionStatus.OFFLINE
        logger.info("Forced offline mode")
        if was_online:
            self._notify(False)

    def start_monitoring(self) -> None:
        """Run an initial check and start background monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        if self._state.status == ConnectionStatus.UNKNOWN:
            self.check_now()

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor",
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            interval = (
                self.check_interval_online
                if self.is_online()
                else self.check_interval_offline
            )

            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_now()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online(),
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
        }

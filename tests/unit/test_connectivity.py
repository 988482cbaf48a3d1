# =============================================================================
# tests/unit/test_connectivity.py
# Unit Tests for connectivity observers
# =============================================================================

import threading


class ScriptedProbe:
    """Probe returning queued answers, then repeating the last one."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = 0

    def __call__(self) -> bool:
        self.calls += 1
        if len(self.answers) > 1:
            answer = self.answers.pop(0)
        else:
            answer = self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class TestStaticConnectivity:
    """Test the manually driven observer"""

    def test_notifies_only_on_change(self):
        from fin_core.data_layer.connectivity import StaticConnectivity

        connectivity = StaticConnectivity(online=False)
        seen = []
        connectivity.subscribe(seen.append)

        connectivity.set_online(False)
        connectivity.set_online(True)
        connectivity.set_online(True)

        assert seen == [True]

    def test_unsubscribe(self):
        from fin_core.data_layer.connectivity import StaticConnectivity

        connectivity = StaticConnectivity(online=True)
        seen = []
        unsubscribe = connectivity.subscribe(seen.append)
        unsubscribe()

        connectivity.set_online(False)

        assert seen == []


class TestConnectionMonitor:
    """Test probe-based connectivity"""

    def test_starts_unknown_and_offline(self):
        from fin_core.data_layer.connectivity import ConnectionMonitor, ConnectionStatus

        monitor = ConnectionMonitor(ScriptedProbe(True))

        assert monitor.state.status == ConnectionStatus.UNKNOWN
        assert monitor.is_online() is False

    def test_check_now_notifies_on_transition(self):
        """Subscribers hear about changes, not about repeated results"""
        from fin_core.data_layer.connectivity import ConnectionMonitor

        monitor = ConnectionMonitor(ScriptedProbe(True, True, False, True))
        seen = []
        monitor.subscribe(seen.append)

        for _ in range(4):
            monitor.check_now()

        assert seen == [True, False, True]
        assert monitor.is_online() is True

    def test_failures_are_counted(self):
        """Consecutive failures accumulate and reset once the probe succeeds"""
        from fin_core.data_layer.connectivity import ConnectionMonitor

        monitor = ConnectionMonitor(ScriptedProbe(False, False, True))

        monitor.check_now()
        monitor.check_now()
        assert monitor.state.consecutive_failures == 2
        assert monitor.state.last_online is None

        monitor.check_now()
        assert monitor.state.consecutive_failures == 0
        assert monitor.state.last_online is not None

    def test_probe_exception_means_offline(self):
        from fin_core.data_layer.connectivity import ConnectionMonitor

        monitor = ConnectionMonitor(ScriptedProbe(RuntimeError("dns")))

        state = monitor.check_now()

        assert monitor.is_online() is False
        assert state.consecutive_failures == 1

    def test_force_offline(self):
        """force_offline flips state and notifies once"""
        from fin_core.data_layer.connectivity import ConnectionMonitor

        monitor = ConnectionMonitor(ScriptedProbe(True))
        monitor.check_now()
        seen = []
        monitor.subscribe(seen.append)

        monitor.force_offline()
        monitor.force_offline()

        assert monitor.is_online() is False
        assert seen == [False]

    def test_status_display(self):
        from fin_core.data_layer.connectivity import ConnectionMonitor

        monitor = ConnectionMonitor(ScriptedProbe(True))
        monitor.check_now()

        display = monitor.get_status_display()

        assert display["status"] == "online"
        assert display["is_online"] is True
        assert display["last_check"] is not None
        assert display["failures"] == 0

    def test_background_loop_detects_recovery(self):
        """The monitoring thread keeps probing and reports the way back online"""
        from fin_core.data_layer.connectivity import ConnectionMonitor

        monitor = ConnectionMonitor(
            ScriptedProbe(False, False, True),
            check_interval_online=0.01,
            check_interval_offline=0.01,
        )
        back_online = threading.Event()
        monitor.subscribe(lambda online: online and back_online.set())

        monitor.start_monitoring()
        try:
            assert back_online.wait(timeout=5)
            assert monitor.is_online() is True
        finally:
            monitor.stop_monitoring()

        assert monitor._monitor_thread is None


class TestMonitorDrivesSync:
    """Test a ConnectionMonitor feeding a SyncManager"""

    def test_reconnect_replays_queue(self, mock_api_client, storage):
        """A probe turning online triggers a replay pass"""
        from fin_core.data_layer.connectivity import ConnectionMonitor
        from fin_core.data_layer.sync_manager import SyncManager
        from fin_core.data_layer.types import APIResponse

        mock_api_client.post.return_value = APIResponse(data={"id": "a1"})
        monitor = ConnectionMonitor(ScriptedProbe(False, True))
        monitor.check_now()
        sync = SyncManager(mock_api_client, storage, monitor, start=False)
        sync.queue_operation("accounts", "create", {"name": "A"})
        mock_api_client.post.assert_not_called()

        monitor.check_now()

        mock_api_client.post.assert_called_once_with("/accounts", {"name": "A"})
        assert sync.get_pending_operations() == []
        sync.destroy()

    def test_going_offline_only_flips_status(self, mock_api_client, storage):
        from fin_core.data_layer.connectivity import ConnectionMonitor
        from fin_core.data_layer.sync_manager import SyncManager

        monitor = ConnectionMonitor(ScriptedProbe(True))
        monitor.check_now()
        sync = SyncManager(mock_api_client, storage, monitor, start=False)

        monitor.force_offline()

        assert sync.is_online() is False
        mock_api_client.post.assert_not_called()
        sync.destroy()


class TestBackgroundTimers:
    """Test the periodic replay and cache sweep threads"""

    def test_periodic_timer_replays_queue(self, mock_api_client, storage, offline):
        """Queued work is sent by the timer without a connectivity event"""
        from fin_core.data_layer.sync_manager import SyncManager
        from fin_core.data_layer.types import APIResponse

        posted = threading.Event()

        def post(path, data):
            posted.set()
            return APIResponse(data={"id": "a1"})

        mock_api_client.post.side_effect = post
        sync = SyncManager(mock_api_client, storage, offline, sync_interval=0.01, start=False)
        sync.queue_operation("accounts", "create", {"name": "A"})

        # Back online without an event, so only the timer can notice
        offline._online = True
        sync._status.is_online = True
        sync.start()
        try:
            assert posted.wait(timeout=5)
        finally:
            sync.destroy()

        mock_api_client.post.assert_called_once_with("/accounts", {"name": "A"})
        assert sync.get_pending_operations() == []

    def test_background_sweep_removes_expired(self, fake_clock):
        """The sweep thread drops expired entries nobody reads"""
        import time
        from fin_core.data_layer.cache_manager import CacheManager

        cache = CacheManager(clock=fake_clock, cleanup_interval=0.01)
        try:
            cache.set("short", 1, ttl=5)
            cache.set("long", 2, ttl=500)
            fake_clock.advance(10)

            deadline = time.time() + 5
            while "short" in cache.keys() and time.time() < deadline:
                time.sleep(0.01)

            assert cache.keys() == ["long"]
        finally:
            cache.destroy()

# =============================================================================
# tests/integration/test_offline_roundtrip.py
# Integration Tests: offline writes, restart and replay
# =============================================================================

import pytest
import requests


@pytest.fixture
def backend_session(mock_session, http_response):
    """
    Session double standing in for the primary backend.

    POST echoes the body back with an id; everything else succeeds empty.
    """
    created = []

    def request(method, url, params=None, json=None, headers=None, timeout=None):
        if method == "POST":
            record = {**json, "id": f"srv-{len(created) + 1}"}
            created.append(record)
            return http_response(201, {"success": True, "data": record})
        if method == "GET":
            return http_response(200, {"success": True, "data": {"accounts": created}})
        return http_response(200, {"success": True, "data": None})

    mock_session.request.side_effect = request
    mock_session.created = created
    return mock_session


def build_layer(db_path, session, connectivity, fallback_session=None):
    from fin_core.data_layer import (
        APIClient,
        CacheManager,
        DataLayer,
        DataLayerConfig,
        LocalStorage,
    )

    config = DataLayerConfig(storage_path=db_path, retry_delay=0.0)
    fallback = requests.Session()
    if fallback_session is not None:
        fallback = fallback_session
    return DataLayer(
        config,
        api_client=APIClient(config.api_base_url, session=session),
        fallback_client=APIClient(config.fallback_base_url, session=fallback),
        cache=CacheManager(start_cleanup=False),
        storage=LocalStorage(db_path),
        connectivity=connectivity,
        start_background=False,
    )


class TestOfflineCreateThenReconnect:
    """Offline create followed by a reconnect"""

    def test_create_offline_then_replay(self, db_path, backend_session, offline):
        """The queued create is POSTed once connectivity returns"""
        layer = build_layer(db_path, backend_session, offline)

        account = layer.create("accounts", {"name": "Checking", "balance": 100})

        assert account["id"].startswith("temp-")
        assert account["_offline"] is True
        assert len(layer.get_pending_operations()) == 1
        backend_session.request.assert_not_called()

        offline.set_online(True)

        method_calls = [c.kwargs["method"] for c in backend_session.request.call_args_list]
        assert method_calls == ["POST"]
        post = backend_session.request.call_args
        assert post.kwargs["url"].endswith("/accounts")
        assert post.kwargs["json"] == {"name": "Checking", "balance": 100}
        assert layer.get_pending_operations() == []
        assert layer.get_sync_status().last_sync is not None
        layer.destroy()

    def test_queue_survives_restart(self, db_path, backend_session, offline):
        """Operations queued before a restart are replayed after it"""
        from fin_core.data_layer.connectivity import StaticConnectivity

        first = build_layer(db_path, backend_session, offline)
        first.create("goals", {"name": "Holiday", "target": 2000})
        first.delete("contacts", "c1")
        first.destroy()
        first.storage.close()

        connectivity = StaticConnectivity(online=False)
        second = build_layer(db_path, backend_session, connectivity)
        pending = second.get_pending_operations()
        assert [(op.resource, op.operation) for op in pending] == [
            ("goals", "create"),
            ("contacts", "delete"),
        ]

        connectivity.set_online(True)

        methods = [c.kwargs["method"] for c in backend_session.request.call_args_list]
        assert methods == ["POST", "DELETE"]
        assert second.get_pending_operations() == []
        second.destroy()
        second.storage.close()

    def test_offline_records_readable_offline(self, db_path, backend_session, offline):
        """Records created offline show up in offline list reads"""
        layer = build_layer(db_path, backend_session, offline)

        layer.create("transactions", {"description": "Coffee", "amount": -3})
        layer.create("transactions", {"description": "Lunch", "amount": -12})

        listed = layer.read("transactions")

        assert [t["description"] for t in listed] == ["Lunch", "Coffee"]
        layer.destroy()
        layer.storage.close()


class TestOnlineRoundTrip:
    """Online create and read through the real client"""

    def test_create_then_read(self, db_path, backend_session, online):
        """Created records are returned by a fresh list read"""
        layer = build_layer(db_path, backend_session, online)

        created = layer.create("accounts", {"name": "Savings"})
        listed = layer.read("accounts")

        assert created["id"] == "srv-1"
        assert listed == [{"name": "Savings", "id": "srv-1"}]
        assert layer.read("accounts", created["id"]) == created
        layer.destroy()
        layer.storage.close()

    def test_unreachable_backend_saves_offline(self, db_path, mock_session, online):
        """Connection errors on both tiers degrade to an offline write"""
        mock_session.request.side_effect = requests.exceptions.ConnectionError("refused")

        layer = build_layer(db_path, mock_session, online, fallback_session=mock_session)

        account = layer.create("accounts", {"name": "Checking"})
        layer.sync_manager.join_background(timeout=5)

        assert account["id"].startswith("offline-")
        assert layer.local_store.find("accounts", account["id"])["name"] == "Checking"
        assert len(layer.get_pending_operations()) == 1
        layer.destroy()
        layer.storage.close()

# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from typing import Any, Dict, List
from unittest.mock import MagicMock

from fin_core.data_layer.api_client import APIClient
from fin_core.data_layer.cache_manager import CacheManager
from fin_core.data_layer.config import DataLayerConfig
from fin_core.data_layer.connectivity import StaticConnectivity
from fin_core.data_layer.data_layer import DataLayer
from fin_core.data_layer.storage import LocalStorage


# =============================================================================
# DETERMINISTIC SEAMS
# =============================================================================

class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_clock():
    """Synthetic clock for TTL tests"""
    return FakeClock()


@pytest.fixture
def recording_sleep():
    """Captures retry backoff delays"""
    return RecordingSleep()


# =============================================================================
# STORAGE / CONNECTIVITY FIXTURES
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    """Path to a throwaway SQLite file"""
    return tmp_path / "fin_core_test.db"


@pytest.fixture
def storage(db_path):
    """Durable storage backed by a temporary SQLite file"""
    store = LocalStorage(db_path)
    yield store
    store.close()


@pytest.fixture
def online():
    """Connectivity that starts online"""
    return StaticConnectivity(online=True)


@pytest.fixture
def offline():
    """Connectivity that starts offline"""
    return StaticConnectivity(online=False)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

def make_mock_client() -> MagicMock:
    """
    APIClient double whose retry() simply runs the operation once.

    Individual tests set return values / side effects on get/post/put/delete.
    """
    client = MagicMock(spec=APIClient)
    client.retry.side_effect = lambda operation, max_retries=3, delay=1.0, should_retry=None: operation()
    client.health_check.return_value = True
    return client


@pytest.fixture
def mock_api_client():
    """Primary backend client double"""
    return make_mock_client()


@pytest.fixture
def mock_fallback_client():
    """Secondary local API client double"""
    return make_mock_client()


@pytest.fixture
def mock_session():
    """requests.Session double for APIClient tests"""
    session = MagicMock()
    session.headers = {}
    return session


def _http_response(
    status_code: int = 200,
    body: Any = None,
    reason: str = "OK",
) -> MagicMock:
    import json
    import requests

    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.reason = reason
    response.content = b"" if body is None else json.dumps(body).encode("utf-8")
    if body is None:
        response.json.side_effect = ValueError("No JSON body")
    else:
        response.json.return_value = body

    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Error",
            response=response,
        )
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def http_response():
    """Factory building requests.Response doubles: http_response(status, body)"""
    return _http_response


# =============================================================================
# DATA LAYER FIXTURES
# =============================================================================

@pytest.fixture
def config(db_path):
    """Config with no real delays"""
    return DataLayerConfig(
        storage_path=db_path,
        retry_delay=0.0,
        max_retries=3,
    )


@pytest.fixture
def cache(fake_clock):
    """Cache on the synthetic clock, no background sweep"""
    manager = CacheManager(clock=fake_clock, start_cleanup=False)
    yield manager
    manager.destroy()


def build_data_layer(config, api_client, fallback_client, cache, storage, connectivity) -> DataLayer:
    """DataLayer wired to test doubles with no background threads"""
    return DataLayer(
        config,
        api_client=api_client,
        fallback_client=fallback_client,
        cache=cache,
        storage=storage,
        connectivity=connectivity,
        start_background=False,
    )


@pytest.fixture
def data_layer(config, mock_api_client, mock_fallback_client, cache, storage, online):
    """Online DataLayer"""
    layer = build_data_layer(config, mock_api_client, mock_fallback_client, cache, storage, online)
    yield layer
    layer.sync_manager.destroy()


@pytest.fixture
def offline_data_layer(config, mock_api_client, mock_fallback_client, cache, storage, offline):
    """DataLayer that starts offline"""
    layer = build_data_layer(config, mock_api_client, mock_fallback_client, cache, storage, offline)
    yield layer
    layer.sync_manager.destroy()


@pytest.fixture
def sample_transactions() -> List[Dict[str, Any]]:
    """Two transactions as the backend returns them"""
    return [
        {
            "id": "t1",
            "description": "Groceries",
            "amount": -54.2,
            "date": "2024-03-01",
            "createdAt": "2024-03-01T10:00:00+00:00",
            "updatedAt": "2024-03-01T10:00:00+00:00",
        },
        {
            "id": "t2",
            "description": "Salary",
            "amount": 3200.0,
            "date": "2024-03-05",
            "createdAt": "2024-03-05T09:00:00+00:00",
            "updatedAt": "2024-03-05T09:00:00+00:00",
        },
    ]
